import logging

import google.generativeai as genai

from fleet_manager.config import settings
from fleet_manager.services import ServiceOrderDetail

logger = logging.getLogger(__name__)

_model = None


def get_model():
    """Cria o modelo do Gemini na primeira chamada."""
    global _model
    if _model is None:
        if not settings.google_api_key:
            logger.warning("GOOGLE_API_KEY não encontrada no arquivo .env")
        genai.configure(api_key=settings.google_api_key)
        _model = genai.GenerativeModel(settings.gemini_model)
    return _model


def build_prompt(detail: ServiceOrderDetail) -> str:
    order = detail.order
    vehicle = detail.vehicle
    vehicle_label = f"{vehicle.brand} {vehicle.model} ({vehicle.plate})" if vehicle else "-"
    items_list_str = "".join(
        f"- {view.item.description} (x{view.item.required_quantity})\n" for view in detail.items
    )
    return f"""
    Atue como um gestor de manutenção de frota objetivo e profissional.
    Escreva um resumo curto da ordem de serviço {order.number} para o gestor da frota.
    Veículo: {vehicle_label}. Tipo: {order.type.value}. Prioridade: {order.priority.value}.
    Descrição do problema: {order.description}

    LISTA REAL DE PEÇAS DA OS (USE APENAS ESTAS):
    {items_list_str}
    Custo estimado: R$ {detail.computed_cost:.2f}

    Instruções RÍGIDAS:
    1. Cite APENAS as peças listadas acima. NÃO INVENTE NENHUM OUTRO SERVIÇO.
    2. Se a lista for pequena, seja breve.
    3. Explique a importância técnica das peças para o veículo.
    4. Sem markdown.
    """


def generate_summary(detail: ServiceOrderDetail) -> str:
    response = get_model().generate_content(build_prompt(detail))
    logger.info("Summary generated for service order %s", detail.order.number)
    return response.text
