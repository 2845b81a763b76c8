#file: frontend/app.py

import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import asyncio
import pandas as pd
import streamlit as st

st.set_page_config(page_title="Gas Analyzer Dashboard", page_icon="🏭", layout="wide")
pd.options.display.float_format = "{:.2f}".format

from frontend.data_fetch import fetch_sensor_data, fetch_sensor_history, fetch_time_range
from frontend.utils import available_aggregation_options, process_history_data
from frontend.ui_elements import display_charts, display_sensor_cards

# Streamlit UI
st.title("Dashboard")
st.caption("Industrial Stack Gas Analyzer - Real-time monitoring and control system")

calibrated = st.toggle("Calibrated", value = True, key = "calibrated",
                       help = "Apply the latest passed calibration to every value")

# Live values
reading = asyncio.run(fetch_sensor_data(calibrated))
if reading :
    display_sensor_cards(reading, calibrated)
else :
    st.warning("No recent sensor data.")

timestamp_range = asyncio.run(fetch_time_range())

if timestamp_range:
    min_date, max_date = pd.to_datetime(timestamp_range[0]), pd.to_datetime(timestamp_range[1])

    col1, col2 = st.columns([3, 2])
    with col1:
        date_range = st.date_input("Select date range", (max_date.date(), max_date.date()),
                                   min_value=min_date.date(), max_value=max_date.date(), key="date_range")

    # Handle different cases when date_range is not a tuple
    if isinstance(date_range, tuple) and len(date_range) == 2:
        start_date, end_date = date_range
    else:
        start_date, end_date = max_date.date(), max_date.date()  # Default values

    # Ensure end_date is not earlier than start_date
    if end_date < start_date:
        end_date = start_date

    aggregation_options = available_aggregation_options(start_date, end_date)
    with col2:
        selected_aggregation = st.selectbox("Aggregation", list(aggregation_options.keys()), key="aggregation")

else:
    st.warning("No data.")
    st.stop()


# Fetch data
history = asyncio.run(fetch_sensor_history(start_date, end_date, aggregation_options[selected_aggregation], calibrated))
if not history :
    st.warning("No data for the selected range.")

# Data visualization
if history :
    display_charts(process_history_data(history))
