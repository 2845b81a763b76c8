#file: frontend/utils.py

import pandas as pd

CO_SOFT_CAP = 2000


def format_co(value: float) -> str:
    """CO above the detector range is shown as >2000."""
    return f">{CO_SOFT_CAP}" if value > CO_SOFT_CAP else f"{value:.1f}"


def process_history_data(history) :
    """Convert history rows into a DataFrame sorted by time, CO capped at the detector range."""
    if not history :
        return pd.DataFrame()

    df = pd.DataFrame(history)
    df["timestamp"] = pd.to_datetime(df["timestamp"])
    df["co"] = df["co"].clip(upper = CO_SOFT_CAP)
    df = df.sort_values(by = "timestamp")

    return df


def available_aggregation_options(start_date, end_date) :
    """Determine available aggregation options based on date range."""
    days = (end_date - start_date).days
    options = {"Minute": "1m", "Hour": "1h"}
    if days >= 1:
        options["Day"] = "1d"
    if days >= 7:
        options["Week"] = "7d"
    return options


def parse_reference(text: str) -> float | None :
    """Parse operator input; None when the field is not a number."""
    try :
        return float(str(text).replace(",", "."))
    except ValueError :
        return None
