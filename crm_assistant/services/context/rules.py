"""
Dynamic context rules.

Each rule is ``(topic, keywords, fetch, render)``; a rule fires when any of
its keywords is a case-insensitive substring of the user's message (or its
pattern matches). Rules are independent of one another, and the table order
is the order their sections appear in the prompt.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Pattern, Tuple

from crm_assistant.storage.datastore import DataStore, FilterOp, Query
from crm_assistant.utils.formatting import (
    count_by,
    date_part,
    format_number,
    format_percent,
    nested,
    parse_timestamp,
    to_number,
    truncate,
)
from .base_context import week_bounds
from .fetching import fetch_all
from .predictive import predictive_queries, render_predictive

Fetch = Callable[[DataStore, str, datetime], Awaitable[Any]]
Render = Callable[[Any, datetime], str]


@dataclass(frozen=True)
class ContextRule:
    topic: str
    keywords: Tuple[str, ...]
    fetch: Fetch
    render: Render
    pattern: Optional[Pattern] = None

    def matches(self, message: str) -> bool:
        lowered = message.lower()
        if any(keyword in lowered for keyword in self.keywords):
            return True
        return bool(self.pattern and self.pattern.search(message))


def section(title: str) -> str:
    return f"\n\n══════ {title} ══════\n"


# --- leads -----------------------------------------------------------------

async def fetch_leads(store: DataStore, message: str, now: datetime):
    return await store.select(
        Query(
            "leads",
            "id, company_name, contact_name, contact_role, stage, channel, subchannel, "
            "owner_id, last_activity_at, created_at, notes, phone, email, "
            "lead_activities(id, type, description, created_at)",
        )
        .order("last_activity_at", descending=True)
        .take(20)
    )


def render_leads(leads, now: datetime) -> str:
    if not leads:
        return ""
    text = section("DETALLE DE LEADS")
    for lead in leads:
        activities = lead.get("lead_activities") or []
        text += (
            f"\n📌 {lead.get('company_name')}\n"
            f"   - Contacto: {lead.get('contact_name') or 'N/A'} ({lead.get('contact_role') or 'N/A'})\n"
            f"   - Stage: {lead.get('stage')} | Canal: {lead.get('channel')}\n"
            f"   - Owner: {lead.get('owner_id') or 'Sin asignar'}\n"
            f"   - Última actividad: {date_part(lead.get('last_activity_at'))}\n"
            f"   - Email: {lead.get('email') or 'N/A'} | Tel: {lead.get('phone') or 'N/A'}\n"
        )
        if activities:
            recent = activities[0]
            text += f"   - Actividad reciente: {recent.get('type')} - {truncate(recent.get('description'), 60)}...\n"
        if lead.get("notes"):
            text += f"   - Notas: {truncate(lead['notes'], 100)}...\n"
    return text


# --- clients ---------------------------------------------------------------

async def fetch_clients(store: DataStore, message: str, now: datetime):
    return await store.select(
        Query(
            "clients",
            "id, company_name, contact_name, contact_role, email, phone, created_at, notes, "
            "projects(id, name, stage, execution_stage, booked_mrr_usd)",
        )
        .order("created_at", descending=True)
        .take(15)
    )


def render_clients(clients, now: datetime) -> str:
    if not clients:
        return ""
    text = section("DETALLE DE CLIENTES")
    for client in clients:
        active = [p for p in client.get("projects") or [] if p.get("stage") == "CERRADO_GANADO"]
        mrr = sum(to_number(p.get("booked_mrr_usd")) for p in active)
        text += (
            f"\n🏢 {client.get('company_name')}\n"
            f"   - Contacto: {client.get('contact_name') or 'N/A'} ({client.get('contact_role') or 'N/A'})\n"
            f"   - Proyectos activos: {len(active)}\n"
            f"   - MRR: ${format_number(mrr)} USD\n"
            f"   - Desde: {date_part(client.get('created_at'))}\n"
        )
    return text


# --- projects --------------------------------------------------------------

async def fetch_projects(store: DataStore, message: str, now: datetime):
    return await store.select(
        Query(
            "projects",
            "id, name, stage, execution_stage, description, kickoff_date, estimated_delivery_date, "
            "actual_delivery_date, booked_mrr_usd, booked_fee_usd, clients(company_name), "
            "project_tasks(id, title, status, priority, due_date, assigned_to), "
            "project_updates(id, content, update_type, created_at, is_resolved)",
        )
        .order("updated_at", descending=True)
        .take(10)
    )


def _is_overdue(due_date, now: datetime) -> bool:
    due = parse_timestamp(due_date)
    return due is not None and due < now


def render_projects(projects, now: datetime) -> str:
    if not projects:
        return ""
    text = section("DETALLE DE PROYECTOS")
    for project in projects:
        pending = [t for t in project.get("project_tasks") or [] if t.get("status") != "done"]
        overdue = [t for t in pending if _is_overdue(t.get("due_date"), now)]
        blockers = [
            u for u in project.get("project_updates") or []
            if u.get("update_type") == "blocker" and not u.get("is_resolved")
        ]
        client = nested(project, "clients", "company_name", default="Sin cliente")
        text += (
            f"\n📁 {project.get('name')} ({client})\n"
            f"   - Stage: {project.get('stage')} | Ejecución: {project.get('execution_stage') or 'N/A'}\n"
            f"   - MRR: ${format_number(project.get('booked_mrr_usd'))} | "
            f"Fee: ${format_number(project.get('booked_fee_usd'))}\n"
            f"   - Kickoff: {project.get('kickoff_date') or 'N/A'} | "
            f"Entrega est.: {project.get('estimated_delivery_date') or 'N/A'}\n"
            f"   - Tareas pendientes: {len(pending)} | Vencidas: {len(overdue)}\n"
            f"   - Blockers sin resolver: {len(blockers)}\n"
        )
        if pending:
            text += "   Tareas próximas:\n"
            for task in pending[:3]:
                text += f"      • {task.get('title')} ({task.get('status')}) - {task.get('assigned_to') or 'Sin asignar'}\n"
    return text


# --- finance ---------------------------------------------------------------

PENDING_INVOICE_STATUSES = ["PENDING", "OVERDUE"]
OVERDUE_HINTS = ("vencid", "por cobrar", "overdue", "atrasad")


def invoice_glyph(status: Optional[str]) -> str:
    if status == "PAID":
        return "✅"
    if status == "PENDING":
        return "⏳"
    return "❌"


async def fetch_finance(store: DataStore, message: str, now: datetime):
    only_pending = any(hint in message.lower() for hint in OVERDUE_HINTS)
    invoices = (
        Query("invoices", "id, concept, total_usd, status, due_date, paid_at, projects(name, clients(company_name))")
        .order("due_date", descending=True)
        .take(15)
    )
    if only_pending:
        invoices = invoices.where("status", FilterOp.IN, PENDING_INVOICE_STATUSES)

    fetched = await fetch_all({
        "transactions": store.select(
            Query(
                "finance_transactions",
                "id, transaction_type, amount_usd, description, vendor_or_source, "
                "transaction_date, income_category, expense_category",
            )
            .order("transaction_date", descending=True)
            .take(20)
        ),
        "invoices": store.select(invoices),
    }, label="finance")
    if all(value is None for value in fetched.values()):
        raise RuntimeError("finance reads failed")
    return fetched


def render_finance(data, now: datetime) -> str:
    text = ""
    transactions = data.get("transactions")
    if transactions:
        text += section("TRANSACCIONES RECIENTES")
        for t in transactions:
            income = t.get("transaction_type") == "INCOME"
            category = t.get("income_category") if income else t.get("expense_category")
            icon = "📈" if income else "📉"
            text += (
                f"{icon} {t.get('transaction_date')} | ${format_number(t.get('amount_usd'))} | "
                f"{t.get('description')} | {category or 'Sin categoría'}\n"
            )

    invoices = data.get("invoices")
    if invoices:
        text += section("FACTURAS")
        for inv in invoices:
            client = nested(inv, "projects", "clients", "company_name", default="N/A")
            text += (
                f"{invoice_glyph(inv.get('status'))} {client} | {inv.get('concept')} | "
                f"${format_number(inv.get('total_usd'))} | {inv.get('status')} | "
                f"Vence: {inv.get('due_date') or 'N/A'}\n"
            )
    return text


# --- marketing -------------------------------------------------------------

async def fetch_marketing(store: DataStore, message: str, now: datetime):
    return await fetch_all({
        "instagram_posts": store.select(Query("instagram_posts").order("posted_at", descending=True).take(10)),
        "instagram_reels": store.select(Query("instagram_reels").order("posted_at", descending=True).take(10)),
        "tiktok": store.select(Query("tiktok_posts").order("posted_at", descending=True).take(10)),
        "youtube": store.select(Query("youtube_videos").order("published_at", descending=True).take(10)),
        "linkedin": store.select(Query("linkedin_posts").order("posted_at", descending=True).take(10)),
    }, label="marketing")


def _total(rows, column: str) -> float:
    return sum(to_number(row.get(column)) for row in rows)


def _best(rows, column: str = "views") -> dict:
    return max(rows, key=lambda row: to_number(row.get(column)))


def render_marketing(data, now: datetime) -> str:
    text = ""

    posts = data.get("instagram_posts")
    if posts:
        text += (
            f"\n📸 INSTAGRAM POSTS ({len(posts)} recientes):\n"
            f"   - Total views: {format_number(_total(posts, 'views'))}\n"
            f"   - Total likes: {format_number(_total(posts, 'likes'))}\n"
            f"   - Engagement promedio: {_total(posts, 'engagement') / len(posts):.2f}%\n"
            f"   - Mejor post: {format_number(_best(posts).get('views'))} views\n"
        )

    reels = data.get("instagram_reels")
    if reels:
        best = _best(reels)
        text += (
            f"\n🎬 INSTAGRAM REELS ({len(reels)} recientes):\n"
            f"   - Total views: {format_number(_total(reels, 'views'))}\n"
            f"   - Engagement promedio: {_total(reels, 'engagement') / len(reels):.2f}%\n"
            f"   - Mejor reel: {format_number(best.get('views'))} views - \"{truncate(best.get('title'), 40)}...\"\n"
        )

    tiktok = data.get("tiktok")
    if tiktok:
        text += (
            f"\n🎵 TIKTOK ({len(tiktok)} recientes):\n"
            f"   - Total views: {format_number(_total(tiktok, 'views'))}\n"
            f"   - Mejor video: {format_number(_best(tiktok).get('views'))} views\n"
        )

    youtube = data.get("youtube")
    if youtube:
        text += (
            f"\n📺 YOUTUBE ({len(youtube)} recientes):\n"
            f"   - Total views: {format_number(_total(youtube, 'views'))}\n"
            f"   - Total watch time: {format_number(_total(youtube, 'watch_minutes'))} minutos\n"
        )

    linkedin = data.get("linkedin")
    if linkedin:
        text += (
            f"\n💼 LINKEDIN ({len(linkedin)} recientes):\n"
            f"   - Total impressions: {format_number(_total(linkedin, 'impressions'))}\n"
        )
    return section("MÉTRICAS DE REDES SOCIALES") + text if text else ""


# --- webinars --------------------------------------------------------------

async def fetch_webinars(store: DataStore, message: str, now: datetime):
    return await store.select(
        Query("webinars", "id, name, event_date, total_registrants, attended_count, status, description")
        .order("event_date", descending=True)
        .take(10)
    )


def render_webinars(webinars, now: datetime) -> str:
    if not webinars:
        return ""
    text = section("WEBINARS")
    for w in webinars:
        registrants = int(to_number(w.get("total_registrants")))
        attended = int(to_number(w.get("attended_count")))
        text += (
            f"🎤 {w.get('name')}\n"
            f"   - Fecha: {date_part(w.get('event_date'))} | Estado: {w.get('status')}\n"
            f"   - Registrados: {registrants} | Asistieron: {attended} ({format_percent(attended, registrants)}%)\n"
        )
    return text


# --- calls -----------------------------------------------------------------

async def fetch_calls(store: DataStore, message: str, now: datetime):
    week_start, week_end = week_bounds(now)
    return await fetch_all({
        "upcoming": store.select(
            Query(
                "calls",
                "id, scheduled_at, company_name, contact_name, team_member, source, call_result, notes, duration_minutes",
            )
            .where("scheduled_at", FilterOp.GTE, now.isoformat())
            .order("scheduled_at")
            .take(10)
        ),
        "week": store.select(
            Query(
                "calls",
                "id, scheduled_at, company_name, contact_name, team_member, source, call_result, key_notes, duration_minutes",
            )
            .where("scheduled_at", FilterOp.GTE, week_start.isoformat())
            .where("scheduled_at", FilterOp.LTE, week_end.isoformat())
            .order("scheduled_at")
            .take(100)
        ),
    }, label="calls")


def render_calls(data, now: datetime) -> str:
    text = ""
    upcoming = data.get("upcoming")
    if upcoming:
        text += section("PRÓXIMAS CALLS")
        for call in upcoming:
            when = parse_timestamp(call.get("scheduled_at"))
            stamp = f"{when.day}/{when.month}/{when.year} {when:%H:%M}" if when else "N/A"
            text += (
                f"📞 {stamp} - {call.get('company_name') or 'Sin empresa'}\n"
                f"   - Contacto: {call.get('contact_name') or 'N/A'} | Responsable: {call.get('team_member')}\n"
                f"   - Fuente: {call.get('source') or 'N/A'}\n"
            )
            if call.get("notes"):
                text += f"   - Notas: {truncate(call['notes'], 80)}...\n"

    week = data.get("week")
    if week:
        completed = [c for c in week if c.get("call_result")]
        by_member = ", ".join(f"{m}: {c}" for m, c in count_by(week, "team_member").items())
        text += (
            "\n══════ RESUMEN CALLS SEMANA ══════\n"
            f"Total: {len(week)} | Completadas: {len(completed)}\n"
            f"Por miembro: {by_member}\n"
        )
        for call in completed[:5]:
            duration = f" - {call['duration_minutes']}min" if call.get("duration_minutes") else ""
            text += f"✅ {call.get('company_name')} ({call.get('team_member')}): {call.get('call_result')}{duration}\n"
    return text


# --- proposals -------------------------------------------------------------

async def fetch_proposals(store: DataStore, message: str, now: datetime):
    return await store.select(
        Query(
            "proposals",
            "id, name, status, mrr_usd, fee_usd, currency, sent_at, version, projects(name, clients(company_name))",
        )
        .order("updated_at", descending=True)
        .take(15)
    )


def render_proposals(proposals, now: datetime) -> str:
    if not proposals:
        return ""
    text = section("PROPUESTAS")
    for p in proposals:
        client = nested(p, "projects", "clients", "company_name", default="N/A")
        project = nested(p, "projects", "name", default="N/A")
        sent = f"- Enviada: {date_part(p['sent_at'])}" if p.get("sent_at") else "- No enviada aún"
        text += (
            f"📄 {p.get('name')} v{p.get('version')} ({p.get('status')})\n"
            f"   - Cliente: {client} | Proyecto: {project}\n"
            f"   - MRR: ${format_number(p.get('mrr_usd'))} | Fee: ${format_number(p.get('fee_usd'))} ({p.get('currency')})\n"
            f"   {sent}\n"
        )
    return text


# --- team ------------------------------------------------------------------

async def fetch_team(store: DataStore, message: str, now: datetime):
    return await fetch_all({
        "members": store.select(
            Query("team_members", "name, slug, role, is_active").where("is_active", FilterOp.EQ, True).take(50)
        ),
        "users": store.select(Query("user_roles", "display_name, email, role").take(50)),
    }, label="team")


def render_team(data, now: datetime) -> str:
    text = ""
    members = data.get("members")
    if members:
        text += section("EQUIPO")
        for m in members:
            text += f"👤 {m.get('name')} ({m.get('slug')}) - Rol: {m.get('role')}\n"
    users = data.get("users")
    if users:
        text += "\nUSUARIOS DEL SISTEMA:\n"
        for u in users:
            text += f"👤 {u.get('display_name')} ({u.get('email')}) - Rol: {u.get('role')}\n"
    return text


# --- tasks -----------------------------------------------------------------

async def fetch_tasks(store: DataStore, message: str, now: datetime):
    return await store.select(
        Query(
            "project_tasks",
            "id, title, status, priority, assigned_to, due_date, project_id, projects(name, clients(company_name))",
        )
        .where("status", FilterOp.NEQ, "done")
        .order("due_date", nulls_first=False)
        .take(20)
    )


def render_tasks(tasks, now: datetime) -> str:
    if not tasks:
        return ""
    overdue = [t for t in tasks if _is_overdue(t.get("due_date"), now)]
    by_status = " | ".join(f"{s}: {c}" for s, c in count_by(tasks, "status").items())

    text = section(f"TAREAS PENDIENTES ({len(tasks)})")
    text += f"Por estado: {by_status}\n"
    if overdue:
        text += f"🚨 VENCIDAS: {len(overdue)}\n"
        for t in overdue[:5]:
            project = nested(t, "projects", "name", default="N/A")
            text += f"   - {t.get('title')} ({project}) - Asignada: {t.get('assigned_to') or 'N/A'} - Vencía: {t.get('due_date')}\n"
    text += "\nTareas próximas:\n"
    for t in [t for t in tasks if t not in overdue][:10]:
        project = nested(t, "projects", "name", default="N/A")
        due = f" - Vence: {t['due_date']}" if t.get("due_date") else ""
        text += f"   • {t.get('title')} [{t.get('status')}] ({project}) - {t.get('assigned_to') or 'Sin asignar'}{due}\n"
    return text


# --- free-text company search ----------------------------------------------

COMPANY_NAME_PATTERN = re.compile(
    r"(?:empresa|cliente|lead|company|sobre)\s+[\"']?([A-Za-zÀ-ÿ\s]+)[\"']?",
    re.IGNORECASE,
)


def extract_company_name(message: str) -> Optional[str]:
    match = COMPANY_NAME_PATTERN.search(message)
    if not match:
        return None
    name = match.group(1).strip()
    # the name ends where another topic keyword starts
    for keyword in TOPIC_KEYWORD_PATTERN.finditer(name):
        if keyword.start() > 0:
            name = name[:keyword.start()].strip()
            break
    return name if len(name) > 2 else None


async def fetch_company(store: DataStore, message: str, now: datetime):
    name = extract_company_name(message)
    if name is None:
        return None
    fetched = await fetch_all({
        "leads": store.select(
            Query("leads", "*, lead_activities(*)").where("company_name", FilterOp.ILIKE, f"%{name}%").take(5)
        ),
        "clients": store.select(
            Query("clients", "*, projects(*, project_tasks(*))").where("company_name", FilterOp.ILIKE, f"%{name}%").take(5)
        ),
    }, label="company_search")
    return {"name": name, **fetched}


def render_company(data, now: datetime) -> str:
    if not data or not (data.get("leads") or data.get("clients")):
        return ""
    text = section(f'BÚSQUEDA: "{data["name"]}"')
    if data.get("leads"):
        text += "\nLEADS ENCONTRADOS:\n"
        for lead in data["leads"]:
            text += (
                f"📌 {lead.get('company_name')}\n"
                f"   - Contacto: {lead.get('contact_name') or 'N/A'} | {lead.get('email') or 'N/A'} | {lead.get('phone') or 'N/A'}\n"
                f"   - Stage: {lead.get('stage')} | Canal: {lead.get('channel')} | Owner: {lead.get('owner_id') or 'Sin asignar'}\n"
                f"   - Actividades: {len(lead.get('lead_activities') or [])}\n"
                f"   - Notas: {lead.get('notes') or 'Sin notas'}\n"
            )
    if data.get("clients"):
        text += "\nCLIENTES ENCONTRADOS:\n"
        for client in data["clients"]:
            text += (
                f"🏢 {client.get('company_name')}\n"
                f"   - Contacto: {client.get('contact_name') or 'N/A'}\n"
                f"   - Proyectos: {len(client.get('projects') or [])}\n"
                f"   - Notas: {client.get('notes') or 'Sin notas'}\n"
            )
    return text


# --- predictive analysis ---------------------------------------------------

async def fetch_predictive(store: DataStore, message: str, now: datetime):
    reads = {name: store.select(query) for name, query in predictive_queries(now).items()}
    return await fetch_all(reads, label="predictive")


DEFAULT_RULES: Tuple[ContextRule, ...] = (
    ContextRule("leads", ("lead", "pipeline", "funnel", "prospecto", "venta"), fetch_leads, render_leads),
    ContextRule("clients", ("cliente", "client", "cuenta"), fetch_clients, render_clients),
    ContextRule("projects", ("proyecto", "project", "tarea", "task", "desarrollo"), fetch_projects, render_projects),
    ContextRule(
        "finance",
        ("finanza", "finance", "ingreso", "gasto", "factura", "invoice", "dinero", "cobr"),
        fetch_finance,
        render_finance,
    ),
    ContextRule(
        "marketing",
        ("marketing", "instagram", "tiktok", "youtube", "linkedin", "redes", "social", "contenido"),
        fetch_marketing,
        render_marketing,
    ),
    ContextRule("webinars", ("webinar", "evento"), fetch_webinars, render_webinars),
    ContextRule("calls", ("call", "llamada", "reunión", "reunion", "reu"), fetch_calls, render_calls),
    ContextRule("proposals", ("propuesta", "proposal", "cotizaci"), fetch_proposals, render_proposals),
    ContextRule("team", ("equipo", "team", "miembro", "quién", "quien"), fetch_team, render_team),
    ContextRule("tasks", ("tarea", "task", "pendiente", "blocker", "backlog"), fetch_tasks, render_tasks),
    ContextRule("company_search", (), fetch_company, render_company, pattern=COMPANY_NAME_PATTERN),
    ContextRule(
        "predictive",
        (
            "análisis", "analisis", "riesgo", "predicci", "recomend", "insight",
            "prioridad", "qué debo", "que debo", "suger", "alerta",
        ),
        fetch_predictive,
        render_predictive,
    ),
)

TOPIC_KEYWORD_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(k) for rule in DEFAULT_RULES for k in rule.keywords) + r")\b",
    re.IGNORECASE,
)
