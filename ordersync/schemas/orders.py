from pydantic import BaseModel, Field, model_validator
from typing import Any, Dict, List, Literal, Optional


class OrderLineItem(BaseModel):
    pedido_id: str
    sku: str
    descricao: Optional[str] = None
    quantidade: int = 1
    valor_unitario: float = 0.0
    valor_total: float = 0.0
    integration_account_id: Optional[str] = None

    class Config:
        from_attributes = True


class CanonicalOrder(BaseModel):
    id: str
    numero: str
    nome_cliente: str
    cpf_cnpj: Optional[str] = None
    data_pedido: str
    data_prevista: Optional[str] = None
    situacao: str
    status_envio: Optional[str] = None
    substatus_envio: Optional[str] = None
    valor_total: float = 0.0
    valor_frete: float = 0.0
    valor_desconto: float = 0.0
    numero_ecommerce: Optional[str] = None
    numero_venda: Optional[str] = None
    empresa: str = "Mercado Livre"
    cidade: Optional[str] = None
    uf: Optional[str] = None
    codigo_rastreamento: Optional[str] = None
    url_rastreamento: Optional[str] = None
    obs: Optional[str] = None
    integration_account_id: str
    last_updated: Optional[str] = None
    itens: List[OrderLineItem] = Field(default_factory=list)

    class Config:
        from_attributes = True

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"itens"})


class OrderFilters(BaseModel):
    situacao: Optional[str] = None
    data_inicio: Optional[str] = None
    data_fim: Optional[str] = None
    atualizado_desde: Optional[str] = None
    atualizado_ate: Optional[str] = None
    search: Optional[str] = None
    cidade: Optional[str] = None
    uf: Optional[str] = None
    valor_min: Optional[float] = None
    valor_max: Optional[float] = None
    sort: Optional[str] = None


class SyncRequest(BaseModel):
    integration_account_id: str = Field(min_length=1)
    filters: OrderFilters = Field(default_factory=OrderFilters)
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)
    force_source: Optional[Literal["banco", "tempo-real"]] = None
    include_shipping: bool = False


class RecordErrorOut(BaseModel):
    order_id: Optional[str] = None
    account_id: Optional[str] = None
    kind: str
    message: str


class Paging(BaseModel):
    total: int = 0
    limit: int = 0
    offset: int = 0


class SyncResponse(BaseModel):
    ok: bool = True
    results: List[Dict[str, Any]] = Field(default_factory=list)
    paging: Paging = Field(default_factory=Paging)
    source: Literal["banco", "tempo-real"]
    errors: List[RecordErrorOut] = Field(default_factory=list)
    synced: int = 0
    unsupported: bool = False


class AggregateRequest(BaseModel):
    integration_account_ids: List[str] = Field(default_factory=list)
    integration_account_id: Optional[str] = None
    filters: OrderFilters = Field(default_factory=OrderFilters)
    force: bool = False

    @model_validator(mode="after")
    def merge_account_ids(self):
        ids = list(self.integration_account_ids)
        if self.integration_account_id and self.integration_account_id not in ids:
            ids.append(self.integration_account_id)
        if not ids:
            raise ValueError("integration_account_ids is required")
        self.integration_account_ids = ids
        return self


class AggregateCounters(BaseModel):
    total: int = 0
    prontos_baixa: int = Field(default=0, serialization_alias="prontosBaixa")
    mapeamento_pendente: int = Field(
        default=0, serialization_alias="mapeamentoPendente")
    baixados: int = 0
    errors: List[RecordErrorOut] = Field(default_factory=list)
    from_cache: bool = False


class BulkActionRequest(BaseModel):
    order_ids: List[str] = Field(min_length=1)
    action: Literal["baixar_estoque", "cancelar_pedido"]


class SkippedOrder(BaseModel):
    order_id: str
    reason: str


class BulkActionResult(BaseModel):
    action: str
    processed: List[str] = Field(default_factory=list)
    skipped: List[SkippedOrder] = Field(default_factory=list)
    errors: List[RecordErrorOut] = Field(default_factory=list)


class ConnectRequest(BaseModel):
    code: str = Field(min_length=1)
    redirect_uri: str = Field(min_length=1)
