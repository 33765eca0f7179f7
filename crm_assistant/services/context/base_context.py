"""
Base context: key business metrics computed for every turn.

A handful of bulk reads (each capped or date-filtered) are grouped in
memory. Blocks whose reads failed are left out of the rendered text.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from crm_assistant.models.actions import TERMINAL_STAGES
from crm_assistant.storage.datastore import FilterOp, Query
from crm_assistant.utils.formatting import (
    count_by,
    format_number,
    parse_timestamp,
    to_number,
    truncate,
)

BAR = "═" * 55


def banner(title: str) -> str:
    return f"{BAR}\n{title.center(55).rstrip()}\n{BAR}"


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def previous_month_start(now: datetime) -> datetime:
    first = month_start(now)
    return month_start(first - timedelta(days=1))


def week_bounds(now: datetime):
    """Monday 00:00 to Sunday 23:59:59.999999 of the current week."""
    start = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=7) - timedelta(microseconds=1)
    return start, end


def base_queries(now: datetime, row_cap: int) -> Dict[str, Query]:
    current_month = month_start(now).date().isoformat()
    last_month = previous_month_start(now).date().isoformat()
    week_start, week_end = week_bounds(now)

    return {
        "leads": Query(
            "leads", "id, stage, company_name, owner_id, last_activity_at, channel, created_at"
        ).take(row_cap),
        "clients": Query("clients", "id, company_name").take(row_cap),
        "projects": Query(
            "projects", "id, name, stage, execution_stage, client_id, booked_mrr_usd"
        ).take(row_cap),
        "deals": Query("deals", "id, mrr_usd, status, created_at")
        .where("status", FilterOp.EQ, "ACTIVE")
        .take(row_cap),
        "transactions": Query(
            "finance_transactions",
            "id, transaction_type, amount_usd, transaction_date, income_category, expense_category",
        )
        .where("transaction_date", FilterOp.GTE, current_month)
        .take(row_cap),
        "last_month_transactions": Query("finance_transactions", "id, transaction_type, amount_usd")
        .where("transaction_date", FilterOp.GTE, last_month)
        .where("transaction_date", FilterOp.LT, current_month)
        .take(row_cap),
        "activities": Query("lead_activities", "id, lead_id, type, description, created_at")
        .order("created_at", descending=True)
        .take(5),
        "calls": Query("calls", "id, team_member, call_result")
        .where("scheduled_at", FilterOp.GTE, week_start.isoformat())
        .where("scheduled_at", FilterOp.LTE, week_end.isoformat())
        .take(row_cap),
        "proposals": Query("proposals", "id, status")
        .where("status", FilterOp.IN, ["DRAFT", "SENT"])
        .take(row_cap),
    }


def sum_amount(rows: List[dict], column: str, transaction_type: Optional[str] = None) -> float:
    return sum(
        to_number(row.get(column))
        for row in rows
        if transaction_type is None or row.get("transaction_type") == transaction_type
    )


def open_leads(leads: List[dict]) -> List[dict]:
    return [lead for lead in leads if lead.get("stage") not in TERMINAL_STAGES]


def inactive_leads(leads: List[dict], now: datetime, days: int = 7) -> List[dict]:
    cutoff = now - timedelta(days=days)
    stale = []
    for lead in open_leads(leads):
        last_activity = parse_timestamp(lead.get("last_activity_at"))
        if last_activity is not None and last_activity < cutoff:
            stale.append(lead)
    return stale


def created_since(rows: List[dict], cutoff: datetime) -> List[dict]:
    fresh = []
    for row in rows:
        created = parse_timestamp(row.get("created_at"))
        if created is not None and created > cutoff:
            fresh.append(row)
    return fresh


def _metrics_block(data: Dict[str, Optional[list]], now: datetime) -> List[str]:
    lines = []
    deals, clients, leads = data.get("deals"), data.get("clients"), data.get("leads")
    calls, proposals = data.get("calls"), data.get("proposals")

    if deals is not None:
        lines.append(f"💰 MRR TOTAL ACTIVO: ${format_number(sum_amount(deals, 'mrr_usd'))} USD")
    if clients is not None:
        lines.append(f"👥 CLIENTES ACTIVOS: {len(clients)}")
    if leads is not None:
        lines.append(f"📊 LEADS ACTIVOS: {len(open_leads(leads))}")
        lines.append(f"🆕 NUEVOS LEADS (7 días): {len(created_since(leads, now - timedelta(days=7)))}")
    if calls is not None:
        completed = [c for c in calls if c.get("call_result")]
        lines.append(f"📞 CALLS ESTA SEMANA: {len(calls)} (completadas: {len(completed)})")
    if proposals is not None:
        sent = sum(1 for p in proposals if p.get("status") == "SENT")
        draft = sum(1 for p in proposals if p.get("status") == "DRAFT")
        lines.append(f"📄 PROPUESTAS ACTIVAS: {len(proposals)} ({sent} enviadas, {draft} en draft)")
    return lines


def _pipeline_block(leads: List[dict]) -> List[str]:
    lines = [f"{stage}: {count}" for stage, count in count_by(leads, "stage").items()]
    lines.append("")
    lines.append("LEADS POR CANAL:")
    lines.extend(f"- {channel}: {count}" for channel, count in count_by(leads, "channel").items())
    return lines


def _projects_block(projects: List[dict]) -> List[str]:
    won = [p for p in projects if p.get("stage") == "CERRADO_GANADO"]
    lines = ["POR STAGE COMERCIAL:"]
    lines.extend(f"- {stage}: {count}" for stage, count in count_by(projects, "stage").items())
    lines.append("")
    lines.append("PROYECTOS ACTIVOS POR ETAPA DE EJECUCIÓN:")
    lines.extend(
        f"- {stage}: {count}"
        for stage, count in count_by(won, "execution_stage", default="SIN_STAGE").items()
    )
    return lines


def _finance_block(transactions: List[dict], last_month: Optional[List[dict]]) -> List[str]:
    income = sum_amount(transactions, "amount_usd", "INCOME")
    expenses = sum_amount(transactions, "amount_usd", "EXPENSE")
    lines = [
        f"📈 INGRESOS: ${format_number(income)} USD",
        f"📉 GASTOS: ${format_number(expenses)} USD",
        f"💵 BALANCE: ${format_number(income - expenses)} USD",
    ]
    if last_month is not None:
        last_income = sum_amount(last_month, "amount_usd", "INCOME")
        change = f"{(income / last_income - 1) * 100:.1f}" if last_income > 0 else "0"
        lines.append(f"📊 VS MES ANTERIOR: {change}%")
    return lines


def _alerts_block(leads: List[dict], now: datetime) -> List[str]:
    stale = inactive_leads(leads, now)
    lines = [f"⚠️ LEADS SIN ACTIVIDAD (7+ días): {len(stale)}"]
    if stale:
        names = ", ".join(lead.get("company_name") or "N/A" for lead in stale[:5])
        suffix = "..." if len(stale) > 5 else ""
        lines.append(f"   Empresas: {names}{suffix}")
    return lines


def _activity_block(activities: List[dict]) -> List[str]:
    return [
        f"- {a.get('type')}: {truncate(a.get('description'), 50)}..."
        for a in activities[:5]
    ]


def render_base(data: Dict[str, Optional[list]], now: datetime) -> str:
    """Render the base section from whatever reads succeeded."""
    sections = [f"FECHA ACTUAL: {now.date().isoformat()}"]

    metrics = _metrics_block(data, now)
    if metrics:
        sections.append(banner("MÉTRICAS CLAVE") + "\n\n" + "\n".join(metrics))

    leads = data.get("leads")
    if leads is not None:
        sections.append(banner("PIPELINE DE VENTAS") + "\n" + "\n".join(_pipeline_block(leads)))

    projects = data.get("projects")
    if projects is not None:
        sections.append(banner("PROYECTOS") + "\n" + "\n".join(_projects_block(projects)))

    transactions = data.get("transactions")
    if transactions is not None:
        finance = _finance_block(transactions, data.get("last_month_transactions"))
        sections.append(banner("FINANZAS DEL MES") + "\n" + "\n".join(finance))

    if leads is not None:
        sections.append(banner("ALERTAS") + "\n" + "\n".join(_alerts_block(leads, now)))

    activities = data.get("activities")
    if activities is not None:
        sections.append(banner("ACTIVIDAD RECIENTE") + "\n" + "\n".join(_activity_block(activities)))

    return "\n" + "\n\n".join(sections) + "\n"
