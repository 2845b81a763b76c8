#file: frontend/pages/calibration.py

import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))

import time
import asyncio
import aiohttp
import streamlit as st

st.set_page_config(page_title="Sensor Calibration", page_icon="🧪", layout="wide")

from frontend.data_fetch import (
    fetch_calibration,
    fetch_calibration_status,
    fetch_co2_setting,
    reset_calibration,
    save_co2_setting,
    start_calibration,
)
from frontend.utils import format_co, parse_reference
from frontend.ui_elements import display_calibration_result

POLL_INTERVAL_S = 2

st.title("Sensor Calibration")
st.caption("Independent calibration for CO, CO₂ and O₂ sensors with statistical validation")
with st.expander("Instructions") :
    st.markdown(
        "- Allow sensors to warm up for at least 5 minutes before calibration\n"
        "- Each calibration takes 3 minutes (30 readings, 6 s apart)\n"
        "- CO is calibrated independently; CO₂ and O₂ are calibrated together\n"
        "- Statistical validation requires |t-value| ≤ 2.045 to pass"
    )

use_co2_from_o2 = asyncio.run(fetch_co2_setting())
toggled = st.toggle("Derive CO₂ from O₂ (20.90 − O₂)", value = use_co2_from_o2)
if toggled != use_co2_from_o2 :
    try :
        asyncio.run(save_co2_setting(toggled))
        st.toast(f"CO₂ from O₂ {'enabled' if toggled else 'disabled'}")
    except aiohttp.ClientError as e :
        st.error(f"Failed to save CO₂ setting: {e}")

records = asyncio.run(fetch_calibration())


def start(grouping: str, references: dict) :
    if any(value is None for value in references.values()) :
        st.error("Reference Value Required: please enter numeric reference values before starting calibration")
        return
    try :
        asyncio.run(start_calibration(grouping, references))
        st.toast("Calibration started: capturing 30 readings over 3 minutes...")
    except aiohttp.ClientResponseError as e :
        st.error(f"Calibration could not start: {e.message}")
    except aiohttp.ClientError as e :
        st.error(f"Calibration could not start: {e}")


def display_progress(status, gases) :
    st.progress(status["progress"] / 100,
                text = f"Calibrating... ({status['collected']}/{status['total']} readings)")
    columns = st.columns(len(gases))
    for column, gas in zip(columns, gases) :
        value = status["latest"].get(gas)
        if value is not None :
            column.metric(f"Current {gas.upper()} Reading", format_co(value) if gas == "co" else f"{value:.2f}")


def calibration_section(grouping: str, title: str, gases: dict) :
    """One calibration section: reference inputs, start button, progress and results."""
    status = asyncio.run(fetch_calibration_status(grouping)) or {"state": "idle"}
    busy = status["state"] in ("calibrating", "computing")

    st.subheader(title)
    columns = st.columns(len(gases))
    references = {}
    for column, (gas, default) in zip(columns, gases.items()) :
        with column :
            text = st.text_input(f"{gas.upper()} reference value", value = default, disabled = busy,
                                 key = f"{grouping}-{gas}-reference")
            references[gas] = parse_reference(text)

    if st.button(f"Start {title}", disabled = busy, key = f"{grouping}-start", use_container_width = True) :
        start(grouping, references)
        st.rerun()

    if status["state"] == "calibrating" :
        display_progress(status, list(gases))
    elif status["state"] == "computing" :
        st.info("Computing results...")
    elif status.get("error") :
        st.error(f"Calibration failed ({status['error']})")

    if busy and st.button("Reset", key = f"{grouping}-reset") :
        try :
            asyncio.run(reset_calibration(grouping))
            st.rerun()
        except aiohttp.ClientError as e :
            st.error(f"Calibration could not be reset: {e}")

    for gas in gases :
        display_calibration_result(gas.upper(), records.get(gas.upper(), {}))
    return busy


co_busy = calibration_section("co", "CO Calibration", {"co": "0"})
st.divider()
co2_o2_busy = calibration_section("co2_o2", "CO₂ & O₂ Calibration", {"co2": "0", "o2": "20.9"})

if co_busy or co2_o2_busy :
    time.sleep(POLL_INTERVAL_S)
    st.rerun()
