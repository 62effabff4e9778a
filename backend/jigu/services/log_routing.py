"""
Jigu Server: Log Storage Routing
================================

What:  Decides which StoragePolicy a log entry gets.
How:   Two static tables. The level table is consulted first and wins; the
       type table is consulted only when the level has no rule; the
       configured default covers everything else.

Routing tables:
    level   debug, info → console_only   warn → console_db   error, fatal → all
    type    http → console_only
            app, db, performance → console_db
            auth, security, system → all

Error-class entries always land in a policy that includes the database.
"""

from typing import Dict

from jigu.models.log_entry import LogLevel, LogType, StoragePolicy

LEVEL_RULES: Dict[LogLevel, StoragePolicy] = {
    LogLevel.DEBUG: StoragePolicy.CONSOLE_ONLY,
    LogLevel.INFO: StoragePolicy.CONSOLE_ONLY,
    LogLevel.WARN: StoragePolicy.CONSOLE_DB,
    LogLevel.ERROR: StoragePolicy.ALL,
    LogLevel.FATAL: StoragePolicy.ALL,
}

TYPE_RULES: Dict[LogType, StoragePolicy] = {
    LogType.HTTP: StoragePolicy.CONSOLE_ONLY,
    LogType.APP: StoragePolicy.CONSOLE_DB,
    LogType.DB: StoragePolicy.CONSOLE_DB,
    LogType.AUTH: StoragePolicy.ALL,
    LogType.SECURITY: StoragePolicy.ALL,
    LogType.PERFORMANCE: StoragePolicy.CONSOLE_DB,
    LogType.SYSTEM: StoragePolicy.ALL,
}


def decide_storage(
    level: LogLevel,
    log_type: LogType,
    default_policy: StoragePolicy,
    level_rules: Dict[LogLevel, StoragePolicy] = LEVEL_RULES,
    type_rules: Dict[LogType, StoragePolicy] = TYPE_RULES,
) -> StoragePolicy:
    """Pure and total: the same inputs always give the same policy."""
    policy = level_rules.get(level)
    if policy is not None:
        return policy
    policy = type_rules.get(log_type)
    if policy is not None:
        return policy
    return default_policy
