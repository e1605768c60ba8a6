"""
Paper ledger dashboard: balance, open lots, recent fills and analytics from JSON exports.
Run from repo root: streamlit run dashboard/app.py
Exports are read from export.directory in config.yaml, or override with: PAPER_DASHBOARD_DATA_DIR=/path/to/exports streamlit run dashboard/app.py
"""

import streamlit as st

from data_reader import (
    _data_dir,
    discover_exports,
    get_analytics,
    get_balance,
    get_balance_history,
    get_positions,
    get_recent_trades,
    load_export,
)

st.set_page_config(page_title="Paper Ledger Dashboard", layout="wide")
st.title("Paper Trading Dashboard")

data_dir = _data_dir()
exports = discover_exports(data_dir)

if not exports:
    st.warning(f"No exports found under: `{data_dir}`")
    st.caption("Run `paper replay signals.jsonl --save` or save GET /api/trades/export?format=json&positions=true&analytics=true&balance_history=true.")
    st.stop()

col_pick, col_refresh = st.columns([3, 1])
with col_pick:
    chosen = st.selectbox("Export", exports, format_func=lambda p: p.name)
with col_refresh:
    if st.button("Refresh"):
        st.rerun()

export = load_export(chosen)
if export is None:
    st.error(f"`{chosen.name}` is not a readable export.")
    st.stop()

balance = get_balance(export)
positions = get_positions(export)
analytics = get_analytics(export)

c1, c2, c3, c4 = st.columns(4)
with c1:
    st.metric("Balance", f"${balance:,.2f}" if balance is not None else "n/a")
with c2:
    st.metric("Open lots", len(positions))
with c3:
    st.metric("Win rate", f"{analytics['win_rate']:.2f}%" if "win_rate" in analytics else "n/a")
with c4:
    net = analytics.get("net_profit_loss")
    st.metric("Net P/L", f"${net:,.2f}" if net is not None else "n/a")

history = get_balance_history(export)
if len(history) > 1:
    st.subheader("Portfolio value")
    st.line_chart(
        {
            "Portfolio value": [s.get("portfolio_value") for s in history],
            "Cash": [s.get("balance") for s in history],
        }
    )

with st.expander("Open positions", expanded=True):
    if not positions:
        st.caption("Flat.")
    else:
        for p in positions:
            opened = (p.get("opened_at") or "")[:19]
            st.text(f"{opened}  {p.get('symbol')}  {p.get('quantity')} @ {p.get('entry_price')}  [{p.get('strategy')}]")

with st.expander("Recent trades", expanded=False):
    trades = get_recent_trades(export, limit=25)
    if not trades:
        st.caption("No trades yet.")
    else:
        for t in trades:
            ts = (t.get("executed_at") or "")[:19]
            st.text(f"{ts}  {t.get('order_kind')} {t.get('side')}  {t.get('quantity')} {t.get('symbol')} @ {t.get('price')}")

with st.expander("Analytics", expanded=False):
    if not analytics:
        st.caption("Export was written without analytics.")
    else:
        st.json(analytics)
