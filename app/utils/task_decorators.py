def every(**schedule):
    """
    Mark a function as a periodic job.

    ``seconds``/``minutes``/``hours`` make an interval trigger, anything else
    (``hour``, ``minute``, ``day_of_week`` ...) a cron trigger.
    """
    def decorator(func):
        func._schedule = schedule
        return func
    return decorator
