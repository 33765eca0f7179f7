"""
业务上下文组装单元测试

测试 crm_assistant/services/context/ 中的:
- base 上下文指标
- 动态规则表（触发、顺序、单调性、失败省略）
- 发票筛选与状态符号
- 预测分析
- 页面上下文
"""

import pytest

from conftest import FIXED_NOW, FakeDataStore
from crm_assistant.exceptions import ContextUnavailableError
from crm_assistant.models.conversation import PageContext
from crm_assistant.services.context.assembler import AssembledContext, ContextAssembler
from crm_assistant.services.context.rules import (
    DEFAULT_RULES,
    extract_company_name,
    invoice_glyph,
)
from crm_assistant.storage.datastore import FilterOp

BASE_TABLES = ["leads", "clients", "projects", "deals", "finance_transactions", "lead_activities", "calls", "proposals"]

PROJECT_REF = {"name": "Bot WhatsApp", "clients": {"company_name": "Acme Corp"}}

CRM_DATA = {
    "leads": [
        {"id": "L1", "company_name": "Acme Corp", "stage": "PROPUESTA", "channel": "LinkedIn",
         "owner_id": "ana", "last_activity_at": "2025-03-01T10:00:00+00:00", "created_at": "2025-02-01T09:00:00+00:00"},
        {"id": "L2", "company_name": "Globex", "stage": "CONTACTADO", "channel": "Webinar",
         "owner_id": None, "last_activity_at": "2025-03-11T10:00:00+00:00", "created_at": "2025-03-10T09:00:00+00:00"},
        {"id": "L3", "company_name": "Initech", "stage": "CERRADO_GANADO", "channel": "LinkedIn",
         "owner_id": "luis", "last_activity_at": "2025-01-20T10:00:00+00:00", "created_at": "2025-01-01T09:00:00+00:00"},
    ],
    "clients": [
        {"id": "C1", "company_name": "Initech", "contact_name": "Bill", "created_at": "2025-01-15T00:00:00+00:00",
         "projects": [{"id": "P1", "stage": "CERRADO_GANADO", "booked_mrr_usd": 1000}]},
        {"id": "C2", "company_name": "Umbrella", "contact_name": "Alice", "created_at": "2025-02-15T00:00:00+00:00",
         "projects": []},
    ],
    "projects": [
        {"id": "P1", "name": "Bot WhatsApp", "stage": "CERRADO_GANADO", "execution_stage": "DESARROLLO",
         "booked_mrr_usd": 1000, "updated_at": "2025-01-02T00:00:00+00:00", "clients": {"company_name": "Initech"}},
        {"id": "P2", "name": "Agente IA", "stage": "PROPUESTA", "execution_stage": None,
         "booked_mrr_usd": 0, "updated_at": "2025-03-10T00:00:00+00:00", "clients": {"company_name": "Umbrella"}},
    ],
    "deals": [
        {"id": "D1", "mrr_usd": 1500, "status": "ACTIVE", "created_at": "2025-03-01T00:00:00+00:00"},
        {"id": "D2", "mrr_usd": "500", "status": "ACTIVE", "created_at": "2024-12-01T00:00:00+00:00"},
        {"id": "D3", "mrr_usd": 900, "status": "CANCELLED", "created_at": "2025-03-02T00:00:00+00:00"},
    ],
    "finance_transactions": [
        {"id": "T1", "transaction_type": "INCOME", "amount_usd": 5000, "transaction_date": "2025-03-05",
         "description": "Fee Initech", "income_category": "FEE"},
        {"id": "T2", "transaction_type": "EXPENSE", "amount_usd": 1200, "transaction_date": "2025-03-06",
         "description": "Servidores", "expense_category": "INFRA"},
        {"id": "T3", "transaction_type": "INCOME", "amount_usd": 4000, "transaction_date": "2025-02-10",
         "description": "Fee febrero", "income_category": "FEE"},
    ],
    "lead_activities": [
        {"id": "A1", "lead_id": "L1", "type": "call", "description": "Llamada de seguimiento", "created_at": "2025-03-01T10:00:00+00:00"},
        {"id": "A2", "lead_id": "L2", "type": "email", "description": "Envío de deck", "created_at": "2025-03-11T10:00:00+00:00"},
    ],
    "calls": [
        {"id": "K1", "scheduled_at": "2025-03-11T10:00:00+00:00", "team_member": "ana", "call_result": "Interesado",
         "company_name": "Globex"},
        {"id": "K2", "scheduled_at": "2025-03-13T09:00:00+00:00", "team_member": "luis", "call_result": None,
         "company_name": "Acme Corp"},
        {"id": "K3", "scheduled_at": "2025-03-20T09:00:00+00:00", "team_member": "ana", "call_result": None,
         "company_name": "Hooli"},
    ],
    "proposals": [
        {"id": "R1", "status": "DRAFT"},
        {"id": "R2", "status": "SENT"},
        {"id": "R3", "status": "ACCEPTED"},
    ],
    "invoices": [
        {"id": "I1", "concept": "Fee enero", "total_usd": 1000, "status": "PAID", "due_date": "2025-01-31", "projects": PROJECT_REF},
        {"id": "I2", "concept": "Fee febrero", "total_usd": 1000, "status": "PENDING", "due_date": "2025-03-20", "projects": PROJECT_REF},
        {"id": "I3", "concept": "Fee marzo", "total_usd": 1500, "status": "OVERDUE", "due_date": "2025-03-01", "projects": PROJECT_REF},
        {"id": "I4", "concept": "Fee anulada", "total_usd": 300, "status": "CANCELLED", "due_date": "2025-02-15", "projects": PROJECT_REF},
    ],
}


@pytest.fixture
def crm_store():
    return FakeDataStore(CRM_DATA)


@pytest.fixture
def crm_assembler(crm_store):
    return ContextAssembler(crm_store, clock=lambda: FIXED_NOW)


SPARSE_DATA = {
    "invoices": [CRM_DATA["invoices"][0]],
    "leads": [CRM_DATA["leads"][0]],
}


def fired_topics(message: str):
    return [rule.topic for rule in DEFAULT_RULES if rule.matches(message)]


async def rendered_topics(assembler: ContextAssembler, message: str):
    return {s.topic for s in await assembler.dynamic_sections(message) if s.ok and s.text}


# ==================== Base ====================

class TestBaseContext:
    """assemble_base"""

    @pytest.mark.asyncio
    async def test_key_metrics(self, crm_assembler):
        text = await crm_assembler.assemble_base()

        assert "FECHA ACTUAL: 2025-03-12" in text
        assert "💰 MRR TOTAL ACTIVO: $2,000 USD" in text
        assert "👥 CLIENTES ACTIVOS: 2" in text
        assert "📊 LEADS ACTIVOS: 2" in text
        assert "🆕 NUEVOS LEADS (7 días): 1" in text
        assert "📞 CALLS ESTA SEMANA: 2 (completadas: 1)" in text
        assert "📄 PROPUESTAS ACTIVAS: 2 (1 enviadas, 1 en draft)" in text

    @pytest.mark.asyncio
    async def test_finance_month(self, crm_assembler):
        text = await crm_assembler.assemble_base()

        assert "📈 INGRESOS: $5,000 USD" in text
        assert "📉 GASTOS: $1,200 USD" in text
        assert "💵 BALANCE: $3,800 USD" in text
        assert "📊 VS MES ANTERIOR: 25.0%" in text

    @pytest.mark.asyncio
    async def test_pipeline_projects_and_alerts(self, crm_assembler):
        text = await crm_assembler.assemble_base()

        assert "PROPUESTA: 1" in text
        assert "- LinkedIn: 2" in text
        assert "- DESARROLLO: 1" in text
        assert "⚠️ LEADS SIN ACTIVIDAD (7+ días): 1" in text
        assert "Empresas: Acme Corp" in text
        assert "- email: Envío de deck..." in text

    @pytest.mark.asyncio
    async def test_every_read_is_bounded(self, crm_store, crm_assembler):
        await crm_assembler.assemble_base()
        assert all(q.limit is not None for q in crm_store.queries)

    @pytest.mark.asyncio
    async def test_partial_failure_omits_block(self, crm_store, crm_assembler):
        crm_store.failing_tables = {"deals", "finance_transactions"}

        text = await crm_assembler.assemble_base()

        assert "MRR TOTAL ACTIVO" not in text
        assert "FINANZAS DEL MES" not in text
        assert "👥 CLIENTES ACTIVOS: 2" in text

    @pytest.mark.asyncio
    async def test_all_reads_failing_is_hard_error(self, crm_store, crm_assembler):
        crm_store.failing_tables = set(BASE_TABLES)

        with pytest.raises(ContextUnavailableError):
            await crm_assembler.assemble_base()

    @pytest.mark.asyncio
    async def test_empty_store_still_renders(self):
        assembler = ContextAssembler(FakeDataStore(), clock=lambda: FIXED_NOW)
        text = await assembler.assemble_base()
        assert "💰 MRR TOTAL ACTIVO: $0 USD" in text
        assert "⚠️ LEADS SIN ACTIVIDAD (7+ días): 0" in text


# ==================== 动态规则 ====================

class TestRuleMatching:
    """规则表触发（纯函数）"""

    def test_no_keywords_fires_nothing(self):
        assert fired_topics("hola, ¿cómo estás?") == []

    def test_case_insensitive(self):
        assert fired_topics("Estado del PIPELINE") == ["leads"]

    def test_table_order(self):
        assert fired_topics("facturas, pipeline y clientes") == ["leads", "clients", "finance"]

    @pytest.mark.parametrize("message", [
        "hola",
        "pipeline",
        "facturas vencidas",
        "tareas del equipo",
        "empresa Acme",
        "análisis de riesgo",
    ])
    def test_keywords_are_monotonic(self, message):
        before = set(fired_topics(message))
        for rule in DEFAULT_RULES:
            for keyword in rule.keywords:
                after = set(fired_topics(f"{message} {keyword}"))
                assert before <= after, f"'{keyword}' removed {before - after}"

    def test_company_name_stops_at_topic_keyword(self):
        assert extract_company_name("empresa Acme pipeline") == "Acme"
        assert extract_company_name("empresa Acme qué debo hacer") == "Acme"
        assert extract_company_name("la empresa Team Rocket") == "Team Rocket"

    def test_company_name_extraction(self):
        assert extract_company_name("háblame de la empresa Acme") == "Acme"
        assert extract_company_name("info del lead xy") is None
        assert extract_company_name("sin nombre") is None

    def test_invoice_glyphs(self):
        assert invoice_glyph("PAID") == "✅"
        assert invoice_glyph("PENDING") == "⏳"
        assert invoice_glyph("OVERDUE") == "❌"
        assert invoice_glyph(None) == "❌"


class TestDynamicContext:
    """assemble_dynamic / assemble"""

    @pytest.mark.asyncio
    async def test_overdue_invoices_listing(self, crm_store, crm_assembler):
        """场景 B：'facturas vencidas' 只列出 PENDING/OVERDUE 发票并带状态符号"""
        context = await crm_assembler.assemble("¿Qué facturas vencidas tenemos?")

        assert context.topics == ["finance"]
        invoices = context.text.split("FACTURAS ══════", 1)[1]
        assert "⏳ Acme Corp | Fee febrero" in invoices
        assert "❌ Acme Corp | Fee marzo" in invoices
        assert "Fee enero" not in invoices
        assert "Fee anulada" not in invoices

        invoice_query = next(q for q in crm_store.queries if q.table == "invoices")
        assert (("status", FilterOp.IN, ["PENDING", "OVERDUE"])
                in [(f.column, f.op, f.value) for f in invoice_query.filters])

    @pytest.mark.asyncio
    async def test_all_invoices_without_overdue_hint(self, crm_assembler):
        text = await crm_assembler.assemble_dynamic("muéstrame las facturas")

        assert "✅ Acme Corp | Fee enero" in text
        assert "❌ Acme Corp | Fee anulada" in text
        assert "TRANSACCIONES RECIENTES" in text

    @pytest.mark.asyncio
    async def test_task_keyword_does_not_narrow_invoices(self, crm_store, crm_assembler):
        text = await crm_assembler.assemble_dynamic("facturas y tareas pendientes")

        assert "✅ Acme Corp | Fee enero" in text
        invoice_query = next(q for q in crm_store.queries if q.table == "invoices")
        assert invoice_query.filters == ()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [
        "muéstrame la factura",
        "háblame de la empresa Acme",
        "pipeline",
    ])
    async def test_rendered_sections_are_monotonic(self, message):
        """追加任一主题关键词不会让已渲染的区块消失"""
        assembler = ContextAssembler(FakeDataStore(SPARSE_DATA), clock=lambda: FIXED_NOW)
        before = await rendered_topics(assembler, message)
        assert before

        for rule in DEFAULT_RULES:
            for keyword in rule.keywords:
                after = await rendered_topics(assembler, f"{message} {keyword}")
                assert before <= after, f"'{keyword}' removed {before - after}"

    @pytest.mark.asyncio
    async def test_sections_follow_table_order(self, crm_assembler):
        context = await crm_assembler.assemble("facturas, pipeline y clientes")

        assert context.topics == ["leads", "clients", "finance"]
        text = context.text
        assert text.index("DETALLE DE LEADS") < text.index("DETALLE DE CLIENTES") < text.index("FACTURAS")

    @pytest.mark.asyncio
    async def test_failed_rule_is_omitted(self, crm_store, crm_assembler):
        crm_store.failing_tables = {"invoices", "finance_transactions"}

        sections = await crm_assembler.dynamic_sections("facturas del pipeline")

        by_topic = {s.topic: s for s in sections}
        assert by_topic["finance"].ok is False
        assert by_topic["leads"].ok is True
        assert "FACTURAS" not in await crm_assembler.assemble_dynamic("facturas del pipeline")

    @pytest.mark.asyncio
    async def test_company_search(self, crm_assembler):
        text = await crm_assembler.assemble_dynamic("háblame de la empresa Acme")

        assert 'BÚSQUEDA: "Acme"' in text
        assert "📌 Acme Corp" in text

    @pytest.mark.asyncio
    async def test_company_search_without_match_adds_nothing(self, crm_assembler):
        assert await crm_assembler.assemble_dynamic("háblame de la empresa Zyxwv") == ""

    @pytest.mark.asyncio
    async def test_no_dynamic_summary(self, crm_assembler):
        context = await crm_assembler.assemble("hola")

        assert context.topics == []
        assert context.summary == "Context included: base + none"


# ==================== 预测分析 ====================

class TestPredictive:
    """assemble_predictive"""

    @pytest.mark.asyncio
    async def test_insights(self, crm_assembler):
        text = await crm_assembler.assemble_predictive()

        assert "📊 ANÁLISIS PREDICTIVO E INSIGHTS:" in text
        assert "Acme Corp (PROPUESTA): 11 días sin actividad" in text
        assert "⚠️ PROYECTOS SIN ACTIVIDAD (posible churn): 1" in text
        assert "🎯 MRR NUEVO (últimos 30 días): $1,500 USD" in text

    @pytest.mark.asyncio
    async def test_empty_collections_render_zero_lines(self):
        assembler = ContextAssembler(FakeDataStore(), clock=lambda: FIXED_NOW)
        text = await assembler.assemble_predictive()

        assert "🚨 LEADS EN RIESGO: 0" in text
        assert "💰 FACTURAS VENCIDAS: 0 ($0 USD)" in text
        assert "📅 FACTURAS POR COBRAR: 0 pendientes ($0 USD)" in text
        assert "sin leads en los últimos 90 días" in text
        assert "🎯 MRR NUEVO (últimos 30 días): $0 USD" in text

    @pytest.mark.asyncio
    async def test_failed_read_is_omitted(self, crm_store, crm_assembler):
        crm_store.failing_tables = {"deals"}
        text = await crm_assembler.assemble_predictive()

        assert "MRR NUEVO" not in text
        assert "LEADS EN RIESGO" in text

    @pytest.mark.asyncio
    async def test_triggered_by_keyword(self, crm_assembler):
        context = await crm_assembler.assemble("dame un análisis de riesgo")
        assert "predictive" in context.topics


# ==================== 页面上下文 ====================

class TestPageContext:
    """render_page_context"""

    def test_renders_page_and_data(self):
        text = ContextAssembler.render_page_context(PageContext(page="leads", data={"id": "L1"}))

        assert "CONTEXTO DE PÁGINA ACTUAL" in text
        assert "El usuario está viendo: leads" in text
        assert 'Datos: {"id":"L1"}' in text

    def test_none_gives_empty(self):
        assert ContextAssembler.render_page_context(None) == ""

    def test_summary_mentions_page(self):
        context = AssembledContext(text="", topics=["leads", "finance"], page=True)
        assert context.summary == "Context included: base + dynamic(leads, finance) + page"
