#file: frontend/ui_elements.py

import streamlit as st
import plotly.express as px

from frontend.utils import CO_SOFT_CAP, format_co

GASES = {
    "co" : ("Carbon Monoxide (CO)", "ppm"),
    "co2" : ("Carbon Dioxide (CO₂)", "%"),
    "o2" : ("Oxygen (O₂)", "%"),
}


def display_sensor_cards(reading, calibrated: bool) :
    """Display live CO, CO2 and O2 values."""
    values = reading["corrected"]
    raw = reading["raw"]
    columns = st.columns(3)
    for column, (gas, (title, unit)) in zip(columns, GASES.items()) :
        with column :
            value = format_co(values[gas]) if gas == "co" else f"{values[gas]:.2f}"
            st.metric(title, f"{value} {unit}", help = f"Raw: {raw[gas]:.2f} {unit}")
            if gas == "co" :
                st.progress(min(values[gas], CO_SOFT_CAP) / CO_SOFT_CAP)
                st.caption(f"Safe limit: 50 ppm | Max detection: {CO_SOFT_CAP} ppm")
            if calibrated :
                st.caption("Calibrated")


def display_charts(data_frame) :
    """Display line charts for the gas readings."""

    data_frame = data_frame.sort_values(by = "timestamp")

    for gas, (title, unit) in GASES.items() :
        if gas in data_frame.columns and data_frame[gas].notna().any() :
            fig = px.line(
                data_frame,
                x = "timestamp",
                y = gas,
                title = title,
                labels = {
                    "timestamp" : "Time",
                    gas : f"{gas.upper()} ({unit})"
                }
            )
            if gas == "co" :
                fig.update_yaxes(range = [0, CO_SOFT_CAP])
            st.plotly_chart(fig)
        else :
            st.info(f"No data for: {title}.")


def display_calibration_result(gas: str, record) :
    """Display the t-test outcome and correction factor of one channel."""
    unit = GASES[gas.lower()][1]
    passed = record.get("passed")
    if passed is None :
        st.caption(f"{gas}: not calibrated yet")
        return

    badge = "✓ PASSED" if passed else "✗ FAILED"
    (st.success if passed else st.error)(f"{gas} calibration {badge}")
    col1, col2, col3 = st.columns(3)
    col1.metric("Reference Value", f"{record['reference_value']:.2f} {unit}")
    col2.metric("Measured Average", f"{record['average']:.2f} {unit}")
    t_value = record.get("t_value")
    col3.metric("T-Value", f"{t_value:.3f}" if t_value is not None else "N/A")
    slope = record.get("correction_slope", 1)
    intercept = record.get("correction_intercept", 0)
    st.caption(f"Correction Factor | Slope: {slope:.4f} | Intercept: {intercept:.4f}")
