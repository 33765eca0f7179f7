"""
Predictive analysis section: risks, overdue money and channel efficiency.

Every sub-block renders a zero/absence line when its collection is empty
and is dropped only when its read failed.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from crm_assistant.models.actions import TERMINAL_STAGES
from crm_assistant.storage.datastore import FilterOp, Query
from crm_assistant.utils.formatting import (
    format_number,
    format_percent,
    nested,
    parse_timestamp,
    to_number,
)

ROW_CAP = 500


def predictive_queries(now: datetime) -> Dict[str, Query]:
    today = now.date().isoformat()
    seven_days_ago = (now - timedelta(days=7)).isoformat()
    thirty_days_ago = (now - timedelta(days=30)).isoformat()
    ninety_days_ago = (now - timedelta(days=90)).isoformat()
    invoice_columns = "id, concept, total_usd, due_date, projects(name, clients(company_name))"

    return {
        "at_risk_leads": Query(
            "leads", "id, company_name, stage, owner_id, last_activity_at, stage_entered_at"
        )
        .where("stage", FilterOp.NOT_IN, list(TERMINAL_STAGES))
        .where("last_activity_at", FilterOp.LT, seven_days_ago)
        .order("last_activity_at")
        .take(ROW_CAP),
        "stale_projects": Query(
            "projects", "id, name, stage, execution_stage, updated_at, clients(company_name)"
        )
        .where("stage", FilterOp.EQ, "CERRADO_GANADO")
        .where("updated_at", FilterOp.LT, thirty_days_ago)
        .take(ROW_CAP),
        "overdue_invoices": Query("invoices", invoice_columns)
        .where("status", FilterOp.EQ, "PENDING")
        .where("due_date", FilterOp.LT, today)
        .order("due_date")
        .take(ROW_CAP),
        "upcoming_invoices": Query("invoices", invoice_columns)
        .where("status", FilterOp.EQ, "PENDING")
        .where("due_date", FilterOp.GTE, today)
        .order("due_date")
        .take(ROW_CAP),
        "channel_leads": Query("leads", "channel, stage")
        .where("created_at", FilterOp.GTE, ninety_days_ago)
        .take(ROW_CAP * 4),
        "new_deals": Query("deals", "mrr_usd, created_at, status")
        .where("status", FilterOp.EQ, "ACTIVE")
        .where("created_at", FilterOp.GTE, thirty_days_ago)
        .take(ROW_CAP),
    }


def _days_since(value, now: datetime) -> Optional[int]:
    moment = parse_timestamp(value)
    if moment is None:
        return None
    return (now - moment).days


def _risky_leads(leads: List[dict], now: datetime) -> List[str]:
    if not leads:
        return ["🚨 LEADS EN RIESGO: 0 (ninguno sin actividad 7+ días)"]
    lines = [f"🚨 LEADS EN RIESGO ({len(leads)}):"]
    for lead in leads[:5]:
        days = _days_since(lead.get("last_activity_at"), now)
        lines.append(f"   - {lead.get('company_name')} ({lead.get('stage')}): {days} días sin actividad")
    if len(leads) > 5:
        lines.append(f"   ... y {len(leads) - 5} más")
    return lines


def _stale_projects(projects: List[dict]) -> List[str]:
    lines = [f"⚠️ PROYECTOS SIN ACTIVIDAD (posible churn): {len(projects)}"]
    for project in projects[:3]:
        client = nested(project, "clients", "company_name", default="N/A")
        lines.append(f"   - {project.get('name')} ({client})")
    return lines


def _invoices(overdue: Optional[List[dict]], upcoming: Optional[List[dict]]) -> List[str]:
    lines = []
    if overdue is not None:
        total = sum(to_number(inv.get("total_usd")) for inv in overdue)
        lines.append(f"💰 FACTURAS VENCIDAS: {len(overdue)} (${format_number(total)} USD)")
        for inv in overdue[:3]:
            client = nested(inv, "projects", "clients", "company_name", default="N/A")
            lines.append(
                f"   - {client}: ${format_number(inv.get('total_usd'))} (vencida {inv.get('due_date')})"
            )
    if upcoming is not None:
        total = sum(to_number(inv.get("total_usd")) for inv in upcoming)
        lines.append(f"📅 FACTURAS POR COBRAR: {len(upcoming)} pendientes (${format_number(total)} USD)")
    return lines


def _channel_efficiency(leads: List[dict]) -> List[str]:
    if not leads:
        return ["📈 EFICIENCIA POR CANAL: sin leads en los últimos 90 días"]
    stats: Dict[str, Dict[str, int]] = {}
    for lead in leads:
        channel = lead.get("channel") or "N/A"
        bucket = stats.setdefault(channel, {"total": 0, "won": 0})
        bucket["total"] += 1
        if lead.get("stage") == "CERRADO_GANADO":
            bucket["won"] += 1

    lines = ["📈 EFICIENCIA POR CANAL (últimos 90 días):"]
    for channel, bucket in stats.items():
        rate = format_percent(bucket["won"], bucket["total"])
        lines.append(f"   - {channel}: {bucket['won']}/{bucket['total']} ({rate}% conversión)")
    return lines


def render_predictive(data: Dict[str, Optional[list]], now: datetime) -> str:
    blocks: List[List[str]] = []

    if data.get("at_risk_leads") is not None:
        blocks.append(_risky_leads(data["at_risk_leads"], now))
    if data.get("stale_projects") is not None:
        blocks.append(_stale_projects(data["stale_projects"]))
    invoices = _invoices(data.get("overdue_invoices"), data.get("upcoming_invoices"))
    if invoices:
        blocks.append(invoices)
    if data.get("channel_leads") is not None:
        blocks.append(_channel_efficiency(data["channel_leads"]))
    if data.get("new_deals") is not None:
        new_mrr = sum(to_number(d.get("mrr_usd")) for d in data["new_deals"])
        blocks.append([f"🎯 MRR NUEVO (últimos 30 días): ${format_number(new_mrr)} USD"])

    body = "\n\n".join("\n".join(block) for block in blocks)
    return f"\n\n📊 ANÁLISIS PREDICTIVO E INSIGHTS:\n\n{body}" if body else ""
