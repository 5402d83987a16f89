import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
import logging
from datetime import date

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import streamlit as st

from tracker.config import MODE_CLOUD, ensure_data_directory, load_settings
from tracker.coordinator import build_tracker
from tracker.domain import ALL, CATEGORIES
from tracker.events import AUTH_STATE_CHANGED, BUDGET_ALERT
from tracker.validation import parse_date

CATEGORY_NAMES = {
    "food": "🍔 Food & Dining",
    "transport": "🚗 Transportation",
    "bills": "💡 Bills & Utilities",
    "shopping": "🛍️ Shopping",
    "entertainment": "🎬 Entertainment",
    "health": "⚕️ Healthcare",
    "education": "📚 Education",
    "other": "📦 Other",
}

settings = load_settings()
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
ensure_data_directory(settings)

st.set_page_config(page_title="Budget Tracker", page_icon="💰", layout="wide")


def run(coro):
    return asyncio.run(coro)


def money(amount: float) -> str:
    return f"₱{amount:,.2f}"


def _remember_alert(event, payload):
    st.session_state.alerts.append(payload["alert"])
    return {}


def _remember_auth(event, payload):
    user = payload.get("user")
    st.session_state.user_email = user.email if user else None
    return {}


if "tracker" not in st.session_state:
    st.session_state.alerts = []
    st.session_state.user_email = None
    tracker = build_tracker(
        settings,
        # consent is collected on the sign-in form before the auth call runs
        confirm_migration=lambda record: bool(st.session_state.get("migration_consent")),
        live_updates=False,
    )
    tracker.bus.subscribe(BUDGET_ALERT, _remember_alert)
    tracker.bus.subscribe(AUTH_STATE_CHANGED, _remember_auth)
    run(tracker.start())
    st.session_state.tracker = tracker

tracker = st.session_state.tracker


def show_messages():
    for alert in st.session_state.alerts:
        st.warning(f"⚠️ {alert}")
    st.session_state.alerts = []
    if st.session_state.get("flash"):
        st.toast(st.session_state.pop("flash"))


# ── Authentication ────────────────────────────────────────────────────────────

if tracker.cloud_enabled and not tracker.auth.is_authenticated():
    st.title("💰 Budget Tracker")
    st.caption("Sign in to sync your budget across devices.")
    login_tab, signup_tab, reset_tab = st.tabs(["Sign in", "Create account", "Forgot password"])

    with login_tab:
        with st.form("login"):
            email = st.text_input("Email")
            password = st.text_input("Password", type="password")
            st.checkbox("Copy data saved on this device to my account", key="migrate_local")
            if st.form_submit_button("Sign in"):
                st.session_state.migration_consent = st.session_state.migrate_local
                result = run(tracker.auth.sign_in(email, password))
                if result.success:
                    st.rerun()
                st.error(result.error)

    with signup_tab:
        with st.form("signup"):
            email = st.text_input("Email", key="signup_email")
            password = st.text_input("Password", type="password", key="signup_password")
            st.checkbox("Copy data saved on this device to my account", key="migrate_local_signup")
            if st.form_submit_button("Create account"):
                st.session_state.migration_consent = st.session_state.migrate_local_signup
                result = run(tracker.auth.sign_up(email, password))
                if result.success:
                    st.rerun()
                st.error(result.error)

    with reset_tab:
        with st.form("reset"):
            email = st.text_input("Email", key="reset_email")
            if st.form_submit_button("Send reset link"):
                result = run(tracker.auth.reset_password(email))
                if result.success:
                    st.success("Password reset email sent.")
                else:
                    st.error(result.error)
    st.stop()


# ── Sidebar ───────────────────────────────────────────────────────────────────

summary = run(tracker.summary())

with st.sidebar:
    if tracker.using_remote:
        st.markdown(f"### ☁️ {st.session_state.user_email or 'Signed in'}")
        if st.button("Sign out"):
            run(tracker.auth.sign_out())
            st.rerun()
    else:
        st.markdown("### 💾 Saved on this device")
        if settings.mode == MODE_CLOUD and not tracker.cloud_enabled:
            st.caption("Cloud sync is not configured.")

    st.markdown("### 🎯 Monthly Budget")
    with st.form("budget"):
        new_budget = st.number_input(
            "Budget",
            min_value=0.0,
            max_value=999_999_999.0,
            value=float(summary["budget"]),
            step=100.0,
        )
        if st.form_submit_button("Save budget"):
            if run(tracker.set_budget(new_budget)):
                st.session_state.flash = "Budget updated successfully!"
            else:
                st.session_state.flash = "Failed to save budget."
            st.rerun()

    st.markdown("### 📦 Data")
    st.download_button(
        "⬇ Export JSON",
        run(tracker.export_as_text()),
        file_name="budget-tracker.json",
        mime="application/json",
    )
    uploaded = st.file_uploader("Import JSON", type=["json"])
    if uploaded is not None and st.button("Import"):
        if run(tracker.import_from_text(uploaded.getvalue().decode("utf-8", errors="replace"))):
            st.session_state.flash = "Data imported."
            st.rerun()
        st.error("That file is not a valid budget export.")

    confirm_clear = st.checkbox("I understand this deletes everything")
    if st.button("🗑 Clear all data", disabled=not confirm_clear):
        run(tracker.clear())
        st.session_state.flash = "All data cleared."
        st.rerun()


# ── Overview ──────────────────────────────────────────────────────────────────

st.title("💰 Budget Tracker")
show_messages()

k1, k2, k3, k4 = st.columns(4)
with k1:
    st.metric("Budget", money(summary["budget"]))
with k2:
    st.metric("Spent", money(summary["total"]))
with k3:
    st.metric("Remaining", money(summary["remaining"]))
with k4:
    st.metric("Avg / day", money(summary["average_daily"]))

if summary["budget"] > 0:
    st.progress(min(1.0, max(0.0, summary["total"] / summary["budget"])))
elif summary["count"] == 0:
    st.info("👋 Welcome! Start by setting your monthly budget.")


# ── Add / edit ────────────────────────────────────────────────────────────────

left, right = st.columns([2, 3])

with left:
    st.subheader("➕ Add Expense")
    with st.form("add_expense", clear_on_submit=True):
        description = st.text_input("Description")
        amount = st.number_input("Amount", min_value=0.0, max_value=999_999_999.0, step=10.0)
        category = st.selectbox("Category", CATEGORIES, format_func=CATEGORY_NAMES.get)
        spent_on = st.date_input("Date", value=date.today())
        if st.form_submit_button("Add expense"):
            expense = run(tracker.add_expense({
                "description": description,
                "amount": amount,
                "category": category,
                "date": spent_on,
            }))
            if expense is None:
                st.error("Please enter a description and an amount greater than zero.")
            else:
                st.session_state.flash = "Expense added successfully!"
                st.rerun()

with right:
    st.subheader("📊 By Category")
    stats = summary["statistics"]
    if stats:
        df_cat = pd.DataFrame([
            {"Category": CATEGORY_NAMES.get(cat, cat), "Total": s["total"], "Share": s["percentage"]}
            for cat, s in stats.items()
        ])
        fig = px.pie(df_cat, values="Total", names="Category", hole=0.4)
        fig.update_layout(height=300, margin=dict(t=10, b=10, l=10, r=10))
        st.plotly_chart(fig, use_container_width=True)
    else:
        st.info("No expenses yet.")

    st.subheader("📈 Last 30 Days")
    days = pd.date_range(end=pd.Timestamp.today().normalize(), periods=30, freq="D")
    if summary["expenses"]:
        df_days = pd.DataFrame([{"date": e.date, "amount": e.amount} for e in summary["expenses"]])
        df_days["date"] = pd.to_datetime(df_days["date"], errors="coerce")
        daily = df_days.dropna().groupby("date")["amount"].sum().reindex(days, fill_value=0)
    else:
        daily = pd.Series(np.zeros(len(days)), index=days)

    fig_ts = go.Figure()
    fig_ts.add_trace(go.Scatter(x=[d.strftime("%b %d") for d in days], y=daily.values, mode="lines+markers", name="Spent"))
    fig_ts.update_layout(height=260, margin=dict(t=10, b=10, l=10, r=10))
    st.plotly_chart(fig_ts, use_container_width=True)


# ── Expense list ──────────────────────────────────────────────────────────────

st.subheader("🧾 Expenses")
filter_category = st.selectbox(
    "Filter",
    (ALL,) + CATEGORIES,
    format_func=lambda c: "All categories" if c == ALL else CATEGORY_NAMES[c],
)
expenses = run(tracker.summary(filter_category))["expenses"]

if not expenses:
    st.info("No expenses match the selected filter.")
else:
    df = pd.DataFrame([e.to_dict() for e in expenses])
    display = (
        df[["date", "description", "category", "amount"]]
        .assign(
            date=lambda x: pd.to_datetime(x["date"], errors="coerce").dt.strftime("%b %d, %Y"),
            category=lambda x: x["category"].map(lambda c: CATEGORY_NAMES.get(c, c)),
            amount=lambda x: x["amount"].map(money),
        )
        .rename(columns=str.title)
    )
    st.dataframe(display, hide_index=True, use_container_width=True)

    labels = {e.id: f"{e.date} · {e.description} · {money(e.amount)}" for e in expenses}
    selected = st.selectbox("Select an expense", list(labels), format_func=labels.get)
    current = next(e for e in expenses if e.id == selected)

    with st.expander("✏️ Edit selected"):
        with st.form("edit_expense"):
            description = st.text_input("Description", value=current.description)
            amount = st.number_input("Amount", min_value=0.0, value=float(current.amount), step=10.0)
            category = st.selectbox(
                "Category", CATEGORIES,
                index=CATEGORIES.index(current.category) if current.category in CATEGORIES else len(CATEGORIES) - 1,
                format_func=CATEGORY_NAMES.get,
            )
            spent_on = st.date_input("Date", value=parse_date(current.date).get_or_else(date.today()))
            if st.form_submit_button("Save changes"):
                updated = run(tracker.update_expense(current.id, {
                    "description": description,
                    "amount": amount,
                    "category": category,
                    "date": spent_on,
                }))
                if updated is None:
                    st.error("Failed to save expense. Please check the fields.")
                else:
                    st.session_state.flash = "Expense updated successfully!"
                    st.rerun()

    if st.button("🗑 Delete selected"):
        if run(tracker.remove_expense(current.id)):
            st.session_state.flash = "Expense deleted."
        st.rerun()

    st.download_button(
        "⬇ Download CSV",
        df.to_csv(index=False),
        file_name="expenses.csv",
        mime="text/csv",
    )
