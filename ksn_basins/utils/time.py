import time


def format_time_duration(seconds):
    """
    Human readable duration, hours and minutes for long runs and fractional
    seconds for short ones.
    """
    if seconds < 60:
        return f"{seconds:.2f}s"

    hours, remainder = divmod(int(seconds), 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    return f"{minutes}m {seconds}s"


def elapsed_since(start_time):
    return format_time_duration(time.time() - start_time)
