"""arq worker settings module.

Import path for arq CLI: arq coursehub.workers.settings.WorkerSettings
"""

from __future__ import annotations

from coursehub.workers.subscription_sweeper import SubscriptionWorkerSettings as WorkerSettings

__all__ = ["WorkerSettings"]
