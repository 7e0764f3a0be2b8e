from .automations import run_automation_rule_job
from .compliance import emit_compliance_tick_job
from .maintenance import prune_automation_history_job
from .schedules import run_scheduled_automation_job

__all__ = [
    "emit_compliance_tick_job",
    "prune_automation_history_job",
    "run_automation_rule_job",
    "run_scheduled_automation_job",
]
"""Background job modules for RQ workers and schedulers."""
