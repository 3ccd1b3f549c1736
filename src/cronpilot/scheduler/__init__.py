"""
scheduler/ — Cron engine, missed-fire counter, run tracker and tick loop.

    from cronpilot.scheduler.scheduler import AutomationScheduler
    from cronpilot.scheduler.cron import matches_cron, describe_schedule
"""
