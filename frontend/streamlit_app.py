#frontend/streamlit_app.py

import time
from datetime import datetime

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import streamlit as st

from paperworth import config
from paperworth.api import ApiClient, ApiError, user_message
from paperworth.auth import (AuthError, FirebaseAuthService, auth_error_message, validate_login,
                             validate_signup)
from paperworth.budget import (BudgetService, budget_history, category_share, rescale_categories,
                               summarize_budget)
from paperworth.categories import PROMOTION_CATEGORIES, category_color, category_icon
from paperworth.notifications import NotificationTimer
from paperworth.promotions import (PromotionService, SavedPromotionsService, filter_by_category,
                                   format_date, has_expired, is_expiring_soon, normalize_promotions,
                                   time_elapsed)
from paperworth.receipts import (DATE_RANGES, FileValidationError, OcrScanner, ReceiptFilter,
                                 ReceiptService, to_display_rows, to_transaction_rows)
from paperworth.rewards import REWARD_CATEGORIES, STATUS_COLORS, RewardsService, RewardsState, \
    can_afford, points_for_next_tier, next_tier
from paperworth.session import AuthGate, SessionStore
from paperworth.stores import HomeStore
from paperworth.utils import format_money

# ---------------- Page config ----------------
st.set_page_config(page_title="PaperWorth", layout="wide", page_icon="🧾")
config.setup_logging()

# banner countdown step, seconds
NOTIFICATION_INTERVAL = 0.1

PAGES = {
    "homepage": "🏠 Home",
    "expense-tracker": "📊 Expense Tracker",
    "budget-settings": "⚙️ Budget Settings",
    "past-receipts": "🧾 Past Receipts",
    "promotions": "🏷️ Promotions",
    "saved-promotions": "🔖 Saved Promotions",
    "rewards": "🎁 Rewards",
}


# ---------------- Services ----------------
def get_services():
    """One set of services per browser session."""
    if "services" in st.session_state:
        return st.session_state.services

    holder = {}
    api = ApiClient(token_provider=lambda: holder["auth"].get_id_token())
    session_store = SessionStore()
    auth = FirebaseAuthService(api, session_store)
    holder["auth"] = auth

    services = {
        "api": api,
        "auth": auth,
        "gate": AuthGate(auth),
        "budget": BudgetService(api),
        "receipts": ReceiptService(api),
        "promotions": PromotionService(api),
        "saved": SavedPromotionsService(api),
        "scanner": OcrScanner(api),
        "rewards": RewardsService(api),
    }
    # the UI polls the countdown on rerun instead of ticking it from a thread
    services["home"] = HomeStore(auth, services["budget"], services["receipts"], services["promotions"],
                                 services["saved"], services["scanner"],
                                 NotificationTimer(interval=NOTIFICATION_INTERVAL, auto_start=False))
    st.session_state.services = services
    return services


def clear_user_cache():
    """Clear all cached data for current user; services are rebuilt from the session file"""
    for key in ["home_loaded", "rewards_state", "past_receipts", "budget_history",
                "promotions_cache", "promotions_saved", "notification_shown_at", "selected_receipt_id",
                "budget_form_month", "services"]:
        if key in st.session_state:
            del st.session_state[key]


# ---------------- Session State Management ----------------
def init_session_state():
    if "route" not in st.session_state:
        st.session_state.route = "homepage"
    if "return_url" not in st.session_state:
        st.session_state.return_url = None
    if "notification_shown_at" not in st.session_state:
        st.session_state.notification_shown_at = None


def notify(message):
    home = get_services()["home"]
    home.notification.show(message, auto_start=False)
    st.session_state.notification_shown_at = time.time()


@st.fragment(run_every=NOTIFICATION_INTERVAL)
def render_notification():
    home = get_services()["home"]
    timer = home.notification
    shown_at = st.session_state.get("notification_shown_at")
    if not timer.visible or shown_at is None:
        return
    remaining = timer.remaining_after(time.time() - shown_at)
    if remaining <= 0:
        timer.close()
        st.session_state.notification_shown_at = None
        return
    st.success(f"✅ {timer.message}")
    st.progress(remaining / timer.start)


# ---------------- CSS ----------------
st.markdown("""
<style>
body, .block-container {
    background: linear-gradient(135deg, #f1f8f4, #e3f2e9);
    font-family: 'Segoe UI', sans-serif;
}

[data-testid="stSidebar"] {
    background: linear-gradient(180deg, #1b5e20, #2e7d32);
    color: white;
}

[data-testid="stSidebar"] .stMarkdown,
[data-testid="stSidebar"] label {
    color: #ffffff !important;
}

.stButton>button {
    background-color: #2e7d32 !important;
    color: white !important;
    border-radius: 10px;
    border: none;
}

.stMetric {
    background: #e8f5e9 !important;
    padding: 15px;
    border-radius: 12px;
    box-shadow: 0 2px 10px rgba(0, 100, 0, 0.12);
}

h1, h2, h3, h4 {
    color: #1b5e20 !important;
    font-weight: 700;
}

.promo-card {
    background: white;
    border-radius: 12px;
    padding: 12px;
    margin-bottom: 10px;
    box-shadow: 0 2px 8px rgba(0, 0, 0, 0.08);
}
</style>
""", unsafe_allow_html=True)


# ---------------- Authentication ----------------
def render_login():
    st.subheader("🔐 Welcome back")
    with st.form("login_form"):
        email = st.text_input("📧 Email", key="login_email")
        password = st.text_input("🔒 Password", type="password", key="login_password")
        submitted = st.form_submit_button("Login", use_container_width=True)

    if submitted:
        errors = validate_login(email, password)
        if errors:
            for message in errors.values():
                st.error(f"❌ {message}")
            return
        auth = get_services()["auth"]
        with st.spinner("Signing in..."):
            try:
                auth.sign_in_with_email_password(email, password)
            except AuthError as e:
                st.error(f"❌ {auth_error_message(e.code)}")
                return
        clear_user_cache()
        st.session_state.route = st.session_state.return_url or "homepage"
        st.session_state.return_url = None
        st.rerun()


def render_signup():
    st.subheader("✨ Create your account")
    with st.form("signup_form"):
        name = st.text_input("👤 Name", key="signup_name")
        email = st.text_input("📧 Email", key="signup_email")
        password = st.text_input("🔒 Password", type="password", key="signup_password")
        confirm = st.text_input("🔒 Confirm Password", type="password", key="signup_confirm")
        agree = st.checkbox("I agree to the terms and conditions", key="signup_terms")
        submitted = st.form_submit_button("Sign Up", use_container_width=True)

    if submitted:
        errors = validate_signup(name, email, password, confirm, agree)
        if errors:
            for message in errors.values():
                st.error(f"❌ {message}")
            return
        auth = get_services()["auth"]
        with st.spinner("Creating your account..."):
            try:
                auth.sign_up_with_email_password(email, password, name)
            except AuthError as e:
                st.error(f"❌ {auth_error_message(e.code, signup=True)}")
                return
        clear_user_cache()
        st.session_state.route = "homepage"
        st.rerun()


# ---------------- Sidebar ----------------
def on_navigate():
    st.session_state.route = st.session_state.nav_radio


def render_sidebar():
    services = get_services()
    auth = services["auth"]
    with st.sidebar:
        st.title("🧾 PaperWorth")
        user = auth.get_current_user()
        if not user:
            return
        st.success(f"Logged in as **{user.name}**")
        routes = list(PAGES.keys())
        # keep the radio in step with routes changed by buttons elsewhere
        st.session_state.nav_radio = st.session_state.route if st.session_state.route in routes else "homepage"
        st.radio("Navigate", routes, format_func=lambda r: PAGES[r], key="nav_radio", on_change=on_navigate)

        st.markdown("---")
        if st.button("🚪 Logout", use_container_width=True, key="logout_btn"):
            auth.sign_out()
            clear_user_cache()
            st.session_state.route = "homepage"
            st.rerun()


# ---------------- Promotion cards ----------------
def render_promotion_card(promo, key_prefix, on_save=None, on_remove=None, is_saved=False):
    with st.container():
        col1, col2 = st.columns([1, 3])
        with col1:
            if promo.image_url and promo.image_url != config.PLACEHOLDER_IMAGE:
                st.image(promo.image_url, use_container_width=True)
            else:
                st.markdown(f"## {category_icon(promo.category)}")
        with col2:
            st.write(f"**{promo.merchant}**")
            st.caption(promo.description)
            badges = [f"📁 {promo.category}", f"⏰ {format_date(promo.expiry)}"]
            if has_expired(promo.expiry):
                badges.append("❌ Expired")
            elif is_expiring_soon(promo.expiry):
                badges.append("⚠️ Expiring soon")
            st.caption(" · ".join(badges))
            if promo.code:
                st.code(promo.code)
            if promo.conditions:
                with st.expander("Conditions"):
                    st.write(promo.conditions)
            if on_save and is_saved:
                st.caption("✅ Saved")
            elif on_save and st.button("🔖 Save", key=f"{key_prefix}_save_{promo.key}"):
                on_save(promo)
            if on_remove and st.button("🗑️ Remove", key=f"{key_prefix}_remove_{promo.key}"):
                on_remove(promo)


def save_promotion_from_home(promo):
    home = get_services()["home"]
    try:
        home.save_promotion(promo)
        st.session_state.notification_shown_at = time.time()
    except ValueError as e:
        st.warning(f"⚠️ {e}")
    except ApiError as e:
        st.error(f"❌ {user_message(e, 'Failed to save promotion. Please try again.')}")


# ---------------- Home ----------------
def render_home():
    services = get_services()
    home = services["home"]
    scanner = services["scanner"]

    if not st.session_state.get("home_loaded"):
        with st.spinner("🔄 Loading your dashboard..."):
            home.load_user_data()
            home.load_saved_promotions()
            home.load_receipt_history()
        st.session_state.home_loaded = True

    st.header(f"👋 Hi, {home.first_name}")
    col1, col2 = st.columns(2)
    col1.metric("💸 Spent this month", format_money(home.monthly_expenses))
    col2.metric("🔖 Saved promotions", len(home.saved_promotions))

    st.subheader("📷 Scan a receipt")
    uploaded = st.file_uploader("Upload a receipt image or PDF", key="receipt_upload",
                                type=sorted(config.ALLOWED_EXTENSIONS))
    if uploaded and st.button("🔍 Scan Receipt", use_container_width=True, key="scan_btn"):
        with st.spinner("Processing your receipt..."):
            try:
                ok = home.process_ocr(uploaded.name, uploaded.getvalue())
            except FileValidationError as e:
                st.error(f"❌ {e}")
                ok = False
        if not ok and scanner.ocr_text:
            st.error(f"❌ {scanner.ocr_text}")

    if scanner.extracted_data:
        data = scanner.extracted_data
        with st.expander("🧾 Extracted receipt", expanded=True):
            col1, col2 = st.columns([1, 2])
            with col1:
                if scanner.image_preview and not scanner.filename.lower().endswith(".pdf"):
                    st.image(scanner.image_preview, use_container_width=True)
            with col2:
                st.write(f"**Merchant:** {data.get('merchantName')}")
                st.write(f"**Total:** {format_money(data.get('totalAmount'))}")
                st.write(f"**Date:** {data.get('dateOfPurchase')}")
                if st.checkbox("Show full text", key="show_full_text"):
                    st.text(scanner.ocr_text)
            col_a, col_b = st.columns(2)
            with col_a:
                if st.button("💾 Save Receipt", use_container_width=True, key="save_receipt_btn"):
                    with st.spinner("Saving your receipt..."):
                        try:
                            home.save_receipt()
                            st.session_state.notification_shown_at = time.time()
                            st.rerun()
                        except ValueError as e:
                            st.error(f"❌ {e}")
                        except ApiError as e:
                            st.error(f"❌ {user_message(e, 'Failed to save receipt. Please try again.')}")
            with col_b:
                if st.button("✖️ Cancel", use_container_width=True, key="cancel_receipt_btn"):
                    home.reset_scanner()
                    st.rerun()

    st.subheader("🎯 Recommended for you")
    if home.recommended_promotions:
        for group in home.recommended_promotions:
            with st.expander(f"{category_icon(group['name'])} {group['name']} ({len(group['deals'])})"):
                for promo in group["deals"]:
                    render_promotion_card(promo, f"rec_{group['name']}", on_save=save_promotion_from_home)
    else:
        st.info("💡 Scan a few receipts to get promotion recommendations")

    st.subheader("🔖 Your saved promotions")
    if home.saved_promotions:
        for promo in home.displayed_saved_promotions:
            render_promotion_card(promo, "home_saved")
        if len(home.saved_promotions) > home.saved_promotions_limit:
            label = "Show less" if home.show_more_saved_promotions else "Show more"
            if st.button(label, key="toggle_saved"):
                home.toggle_show_more_saved_promotions()
                st.rerun()
    else:
        st.info("No saved promotions yet")


# ---------------- Expense Tracker ----------------
def render_expense_tracker():
    services = get_services()
    user = services["auth"].get_current_user()
    budget_service = services["budget"]

    st.header("📊 Expense Tracker")
    st.caption(datetime.now().strftime("%B %Y"))

    if "budget_history" not in st.session_state:
        with st.spinner("🔄 Loading budgets..."):
            st.session_state.budget_history = budget_service.load_budget_history(user.id, 3)
    budgets = st.session_state.budget_history

    current = budget_service.current_budget
    if current is None:
        st.info("No budget for this month yet")
        return
    summary = summarize_budget(current)

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("💸 Spent", format_money(summary["total_spent"]))
    col2.metric("🎯 Budget", format_money(summary["monthly_budget"]))
    col3.metric("💰 Remaining", format_money(summary["remaining"]),
                delta_color="normal" if summary["remaining"] >= 0 else "inverse")
    col4.metric("📈 Used", f"{summary['percentage_used']}%")
    st.progress(summary["percentage_used"] / 100)
    if summary["at_risk"]:
        st.warning("⚠️ You have used more than 80% of this month's budget")

    if summary["categories"]:
        st.subheader("📁 Spending by Category")
        cat_df = pd.DataFrame(summary["categories"])
        col1, col2 = st.columns([2, 1])
        with col1:
            fig = px.bar(cat_df, x="amount", y="name", orientation="h", color="name",
                         color_discrete_map={r["name"]: r["color"] for r in summary["categories"]},
                         title="This month")
            fig.update_layout(template="plotly_white", showlegend=False)
            st.plotly_chart(fig, use_container_width=True)
        with col2:
            display = cat_df[["icon", "name", "amount", "budget", "percentage", "transactions"]].copy()
            display["amount"] = display["amount"].map(format_money)
            display["budget"] = display["budget"].map(format_money)
            st.dataframe(display.rename(columns={
                "icon": "", "name": "Category", "amount": "Spent", "budget": "Budget",
                "percentage": "%", "transactions": "Tx"
            }), use_container_width=True, hide_index=True)

    history, savings = budget_history(budgets)
    col1, col2 = st.columns(2)
    with col1:
        st.subheader("📅 Monthly History")
        hist_df = pd.DataFrame(history)
        if not hist_df.empty:
            fig_hist = px.bar(hist_df, x="month", y="amount", title="Spending per month")
            fig_hist.update_layout(template="plotly_white")
            st.plotly_chart(fig_hist, use_container_width=True)
    with col2:
        st.subheader("🏦 Savings Trend")
        sav_df = pd.DataFrame(savings)
        if not sav_df.empty:
            fig_sav = go.Figure()
            # overspent months show red
            colors = np.where(sav_df["saved"] >= 0, "#4CAF50", "#F44336")
            fig_sav.add_trace(go.Bar(x=sav_df["month"], y=sav_df["saved"], marker_color=colors,
                                     text=sav_df["percentage"].astype(str) + "%", name="Saved"))
            fig_sav.update_layout(template="plotly_white", yaxis_title="Saved ($)")
            st.plotly_chart(fig_sav, use_container_width=True)

    st.subheader("🕒 Recent Transactions")
    rows = to_transaction_rows(services["receipts"].get_recent_receipts(user.id))
    if rows:
        tx_df = pd.DataFrame(rows)
        tx_df["date"] = pd.to_datetime(tx_df["date"], errors="coerce").dt.strftime("%b %d")
        tx_df["amount"] = tx_df["amount"].map(format_money)
        st.dataframe(tx_df[["icon", "merchant", "category", "amount", "date"]].rename(columns={
            "icon": "", "merchant": "Merchant", "category": "Category", "amount": "Amount", "date": "Date"
        }), use_container_width=True, hide_index=True)
    else:
        st.info("No recent transactions")

    if st.button("⚙️ Edit Budget", key="edit_budget"):
        st.session_state.route = "budget-settings"
        st.rerun()


# ---------------- Budget Settings ----------------
def _category_key(name):
    return f"budget_cat_{name}"


def on_total_budget_change():
    """Scale every category field by the change in the total."""
    old_total = st.session_state.get("budget_total_prev", 0)
    new_total = st.session_state.get("budget_total", 0)
    names = st.session_state.get("budget_category_names", [])
    amounts = {name: st.session_state.get(_category_key(name), 0.0) for name in names}
    for name, amount in rescale_categories(amounts, old_total, new_total).items():
        st.session_state[_category_key(name)] = amount
    if new_total > 0:
        st.session_state.budget_total_prev = new_total


def render_budget_settings():
    services = get_services()
    user = services["auth"].get_current_user()
    budget_service = services["budget"]

    st.header("⚙️ Budget Settings")
    budget = budget_service.current_budget or budget_service.load_user_budget(user.id)

    if st.session_state.get("budget_form_month") != budget.month_year:
        st.session_state.budget_form_month = budget.month_year
        st.session_state.budget_total = float(budget.total_budget)
        st.session_state.budget_total_prev = float(budget.total_budget)
        st.session_state.budget_category_names = [c.category for c in budget.categories]
        for cat in budget.categories:
            st.session_state[_category_key(cat.category)] = float(cat.budget_amount)

    st.number_input("🎯 Monthly Budget ($)", min_value=1.0, step=50.0, key="budget_total",
                    on_change=on_total_budget_change)

    st.subheader("📁 Category Budgets")
    amounts = {}
    for name in st.session_state.budget_category_names:
        col1, col2 = st.columns([3, 1])
        with col1:
            amounts[name] = st.number_input(f"{category_icon(name)} {name}", min_value=0.0, step=10.0,
                                            key=_category_key(name))
        with col2:
            share = category_share(amounts[name], st.session_state.budget_total)
            st.markdown(f"<span style='color:{category_color(name)}'>**{share}%**</span>",
                        unsafe_allow_html=True)

    col1, col2 = st.columns(2)
    with col1:
        if st.button("💾 Save Budget", use_container_width=True, key="save_budget"):
            try:
                budget_service.save_budget_settings(st.session_state.budget_total, amounts)
                st.success("✅ Budget updated successfully!")
                st.session_state.pop("budget_history", None)
                st.session_state.pop("budget_form_month", None)
            except ValueError as e:
                st.error(f"❌ Please correct the highlighted fields. {e}")
    with col2:
        if st.button("↩️ Back", use_container_width=True, key="budget_back"):
            st.session_state.route = "expense-tracker"
            st.rerun()


# ---------------- Past Receipts ----------------
def render_past_receipts():
    services = get_services()
    user = services["auth"].get_current_user()
    receipt_service = services["receipts"]

    st.header("🧾 Past Receipts")

    if "past_receipts" not in st.session_state:
        try:
            st.session_state.past_receipts = to_display_rows(receipt_service.get_user_receipts(user.id))
        except ApiError as e:
            st.error(f"❌ {user_message(e, 'Failed to load receipts. Please try again later.')}")
            st.session_state.past_receipts = []
    rows = st.session_state.past_receipts

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        search = st.text_input("🔍 Search merchant", key="receipt_search")
    with col2:
        category = st.selectbox("📁 Category", [c["id"] for c in PROMOTION_CATEGORIES],
                                format_func=lambda c: next(o["name"] for o in PROMOTION_CATEGORIES if o["id"] == c),
                                key="receipt_category")
    with col3:
        date_range = st.selectbox("📅 Date", [d["id"] for d in DATE_RANGES],
                                  format_func=lambda d: next(o["name"] for o in DATE_RANGES if o["id"] == d),
                                  key="receipt_date_range")
    with col4:
        has_promo = st.checkbox("🏷️ With promotions", key="receipt_has_promo")

    filtered = ReceiptFilter(search, category, date_range, has_promo).apply(rows)
    if not filtered:
        st.info("💳 No receipts found")
        return

    df = pd.DataFrame(filtered)
    df["date"] = pd.to_datetime(df["date_of_purchase"], errors="coerce", utc=True).dt.strftime("%Y-%m-%d")
    df["amount"] = df["total_amount"].map(format_money)
    st.dataframe(df[["merchant_name", "category", "date", "amount"]].rename(columns={
        "merchant_name": "Merchant", "category": "Category", "date": "Date", "amount": "Amount"
    }), use_container_width=True, hide_index=True)
    st.caption(f"Showing {len(filtered)} of {len(rows)} receipts")

    ids = [r["id"] for r in filtered]
    labels = {r["id"]: f"{r['merchant_name']} · {format_money(r['total_amount'])}" for r in filtered}
    selected_id = st.selectbox("🔎 Receipt details", ids, format_func=lambda i: labels[i], key="selected_receipt_id")
    receipt = next((r for r in rows if r["id"] == selected_id), None)
    if receipt is None:
        return

    with st.expander(f"{category_icon(receipt['category'])} {receipt['merchant_name']}", expanded=True):
        if not receipt["promotions"]:
            receipt["promotions"] = receipt_service.get_receipt_promotions(receipt["id"])
            receipt["has_promotion"] = bool(receipt["promotions"])
        col1, col2 = st.columns([1, 2])
        with col1:
            if receipt["image_url"]:
                st.image(receipt["image_url"], use_container_width=True)
        with col2:
            st.write(f"**Total:** {format_money(receipt['total_amount'])}")
            st.write(f"**Date:** {format_date(receipt['date_of_purchase'])}")
            if receipt["items"]:
                items_df = pd.DataFrame(receipt["items"])
                st.dataframe(items_df, use_container_width=True, hide_index=True)
            if receipt["has_promotion"]:
                st.success(f"🏷️ {len(receipt['promotions'])} promotion(s) for this receipt")
                if st.button("View promotions", key="receipt_promos"):
                    st.session_state.promotions_receipt_id = receipt["id"]
                    st.session_state.pop("promotions_cache", None)
                    st.session_state.pop("promotions_saved", None)
                    st.session_state.route = "promotions"
                    st.rerun()
        if st.button("🗑️ Delete receipt", key=f"delete_{receipt['id']}"):
            try:
                receipt_service.delete_receipt(receipt["id"])
                st.session_state.past_receipts = [r for r in rows if r["id"] != receipt["id"]]
                st.success("✅ Receipt deleted")
                st.rerun()
            except ApiError as e:
                st.error(f"❌ {user_message(e, 'Failed to delete receipt. Please try again.')}")


# ---------------- Promotions ----------------
def save_promotion_from_list(promo):
    services = get_services()
    user = services["auth"].get_current_user()
    saved = services["saved"]
    if saved.is_promotion_saved(user.id, promo.key)["saved"]:
        st.warning("⚠️ This promotion is already saved!")
        return
    try:
        saved.save_promotion(user.id, promo.key)
        st.session_state.setdefault("promotions_saved", {})[promo.key] = True
        notify("Promotion saved successfully!")
    except ApiError as e:
        st.error(f"❌ {user_message(e, 'Failed to save promotion. Please try again.')}")


def render_promotions():
    services = get_services()
    promotion_service = services["promotions"]

    st.header("🏷️ Promotions")
    receipt_id = st.session_state.get("promotions_receipt_id")

    if "promotions_cache" not in st.session_state:
        with st.spinner("🔄 Loading promotions..."):
            try:
                if receipt_id:
                    promos = promotion_service.load_for_receipt_or_all(receipt_id)
                else:
                    promos = normalize_promotions(promotion_service.get_all_promotions())
            except ApiError as e:
                st.error(f"❌ {user_message(e, 'Failed to load promotions. Please try again.')}")
                promos = []
        st.session_state.promotions_cache = promos
    promos = st.session_state.promotions_cache

    search = st.text_input("🔍 Search promotions", key="promo_search")
    if search and st.button("Search", key="promo_search_btn"):
        try:
            st.session_state.promotions_cache = normalize_promotions(promotion_service.search_promotions(search))
            st.session_state.pop("promotions_saved", None)
            st.rerun()
        except ApiError as e:
            st.error(f"❌ {user_message(e, 'Search failed. Please try again.')}")

    if "promotions_saved" not in st.session_state:
        user = services["auth"].get_current_user()
        st.session_state.promotions_saved = services["saved"].saved_status(user.id, [p.key for p in promos])
    saved_map = st.session_state.promotions_saved

    tabs = st.tabs([c["name"] for c in PROMOTION_CATEGORIES])
    for tab, option in zip(tabs, PROMOTION_CATEGORIES):
        with tab:
            shown = filter_by_category(promos, option["id"])
            if not shown:
                st.info("No promotions in this category")
            for promo in shown:
                render_promotion_card(promo, f"promo_{option['id']}", on_save=save_promotion_from_list,
                                      is_saved=saved_map.get(promo.key, False))

    if receipt_id and st.button("🔄 Show all promotions", key="promo_all"):
        st.session_state.pop("promotions_receipt_id", None)
        st.session_state.pop("promotions_cache", None)
        st.session_state.pop("promotions_saved", None)
        st.rerun()


# ---------------- Saved Promotions ----------------
def render_saved_promotions():
    services = get_services()
    user = services["auth"].get_current_user()
    saved_service = services["saved"]

    st.header("🔖 Saved Promotions")
    if not saved_service.initial_load_done:
        with st.spinner("🔄 Loading saved promotions..."):
            saved_service.get_saved_promotions(user.id)

    category = st.selectbox("📁 Category", [c["id"] for c in PROMOTION_CATEGORIES],
                            format_func=lambda c: next(o["name"] for o in PROMOTION_CATEGORIES if o["id"] == c),
                            key="saved_category")
    shown = filter_by_category(saved_service.saved_promotions, category)
    if not shown:
        st.info("💡 No saved promotions. Browse promotions to save some!")
        return

    def remove(promo):
        try:
            saved_service.remove_promotion(user.id, promo.key)
            notify("Promotion removed!")
            st.rerun()
        except ApiError as e:
            st.error(f"❌ {user_message(e, 'Failed to remove promotion. Please try again.')}")

    for promo in shown:
        render_promotion_card(promo, "saved", on_remove=remove)
        if promo.saved_at:
            st.caption(f"🕒 Saved {time_elapsed(promo.saved_at)}")
        st.markdown("---")

    if st.button("🔄 Refresh", key="refresh_saved"):
        saved_service.refresh_saved_promotions(user.id)
        st.rerun()


# ---------------- Rewards ----------------
def render_rewards():
    services = get_services()
    user = services["auth"].get_current_user()

    st.header("🎁 Rewards")
    if "rewards_state" not in st.session_state:
        with st.spinner("🔄 Loading rewards..."):
            st.session_state.rewards_state = RewardsState(services["rewards"], user.id).load()
    state = st.session_state.rewards_state

    points = state.points
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("🏅 Tier", state.tier)
    col2.metric("⭐ Total Points", points.total_points if points else 0)
    col3.metric("💎 Available", points.available_points if points else 0)
    col4.metric("🛍️ Spent", points.spent_points if points else 0)

    _, next_name = next_tier(state.total_points)
    st.progress(state.progress / 100)
    st.caption(f"{points_for_next_tier(state.total_points)} points to {next_name}")

    if not state.has_claimed_welcome_bonus:
        if st.button("🎉 Claim 100-point welcome bonus", key="claim_bonus", type="primary"):
            try:
                if state.claim_welcome_bonus():
                    st.balloons()
                    st.success("✅ Welcome bonus claimed!")
                else:
                    st.info("Welcome bonus has already been claimed")
            except ApiError as e:
                st.error(f"❌ {user_message(e, 'Failed to claim the welcome bonus. Please try again.')}")

    tab1, tab2, tab3 = st.tabs(["🎁 Rewards", "📜 Redemption History", "💳 Points Activity"])
    with tab1:
        categories = [c for c in REWARD_CATEGORIES if c["id"] != "WELCOME"]
        state.selected_category = st.selectbox(
            "Category", [c["id"] for c in categories],
            format_func=lambda c: next(o["name"] for o in categories if o["id"] == c), key="reward_category")
        rewards = state.filtered_rewards
        if not rewards:
            st.info("No rewards available in this category")
        for reward in rewards:
            with st.container():
                col1, col2, col3 = st.columns([3, 1, 1])
                with col1:
                    st.write(f"**{reward.name}**")
                    st.caption(reward.description)
                    if reward.merchant_name:
                        st.caption(f"🏪 {reward.merchant_name}")
                with col2:
                    st.metric("Cost", f"{reward.points_cost} pts")
                with col3:
                    affordable = can_afford(points, reward)
                    if st.button("Redeem", key=f"redeem_{reward.id}", disabled=not affordable,
                                 use_container_width=True):
                        try:
                            user_reward = state.redeem(reward)
                            st.success(f"✅ Redeemed {reward.name}!")
                            if user_reward.redemption_code:
                                st.code(user_reward.redemption_code)
                        except ApiError as e:
                            st.error(f"❌ {user_message(e, 'Failed to redeem the reward. Please try again.')}")
                if reward.terms_conditions:
                    with st.expander("Terms & Conditions"):
                        st.write(reward.terms_conditions)
                st.markdown("---")

    with tab2:
        if state.redemption_history:
            hist_df = pd.DataFrame([{
                "Reward": r.reward_name,
                "Points": r.points_spent,
                "Date": format_date(r.redeemed_date),
                "Status": r.status,
                "Code": r.redemption_code or "",
            } for r in state.redemption_history])
            st.dataframe(hist_df.style.map(lambda s: f"color: {STATUS_COLORS.get(s, 'grey')}", subset=["Status"]),
                         use_container_width=True, hide_index=True)
        else:
            st.info("No redemptions yet")

    with tab3:
        if state.recent_transactions:
            tx_df = pd.DataFrame([{
                "Date": format_date(t.transaction_date),
                "Type": t.transaction_type,
                "Points": t.points if t.transaction_type == "EARNED" else -t.points,
                "Source": t.source,
                "Description": t.description,
            } for t in state.recent_transactions])
            fig = px.bar(tx_df, x="Date", y="Points", color="Type",
                         color_discrete_map={"EARNED": "#4CAF50", "SPENT": "#F44336"},
                         title="Points in the last 30 days")
            fig.update_layout(template="plotly_white")
            st.plotly_chart(fig, use_container_width=True)
            st.dataframe(tx_df, use_container_width=True, hide_index=True)
        else:
            st.info("No points activity in the last 30 days")

    if st.button("🔄 Refresh", key="refresh_rewards"):
        st.session_state.pop("rewards_state", None)
        st.rerun()


# ---------------- Main App ----------------
RENDERERS = {
    "homepage": render_home,
    "expense-tracker": render_expense_tracker,
    "budget-settings": render_budget_settings,
    "past-receipts": render_past_receipts,
    "promotions": render_promotions,
    "saved-promotions": render_saved_promotions,
    "rewards": render_rewards,
}


def main():
    init_session_state()
    services = get_services()
    render_sidebar()
    if services["home"].notification.visible:
        # re-renders itself each interval until the countdown hides it
        render_notification()

    route = st.session_state.route
    gate = services["gate"]
    if not gate.can_activate(route):
        st.session_state.return_url = gate.redirect["return_url"]
        st.title("🧾 PaperWorth")
        st.markdown("**Scan receipts, track your budget, earn rewards**")
        tab1, tab2 = st.tabs(["🔐 Login", "✨ Sign Up"])
        with tab1:
            render_login()
        with tab2:
            render_signup()
        return

    RENDERERS.get(route, render_home)()


if __name__ == "__main__":
    main()
