"""adr_orchestration.models -- SQLAlchemy ORM models for the engine tables."""

from adr_orchestration.models.account import AccountModel, RuleModel
from adr_orchestration.models.configuration import BlacklistModel, ConfigurationModel
from adr_orchestration.models.job import ExecutionModel, JobModel
from adr_orchestration.models.run import OrchestrationRunModel

__all__ = [
    "AccountModel",
    "BlacklistModel",
    "ConfigurationModel",
    "ExecutionModel",
    "JobModel",
    "OrchestrationRunModel",
    "RuleModel",
]
