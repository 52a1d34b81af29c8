from sqlalchemy import Column, String, Boolean, DateTime, Integer, ForeignKey, Text, Numeric, UniqueConstraint
from sqlalchemy.sql import func
import uuid
from ordersync.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Pedido(Base):
    __tablename__ = "pedidos"

    id = Column(String(64), primary_key=True)
    numero = Column(String(64), nullable=False)
    nome_cliente = Column(String(255), nullable=False)
    cpf_cnpj = Column(String(32))
    data_pedido = Column(String(10), nullable=False, index=True)
    data_prevista = Column(String(10))
    situacao = Column(String(64), nullable=False, index=True)
    status_envio = Column(String(64))
    substatus_envio = Column(String(64))
    valor_total = Column(Numeric(15, 2), default=0)
    valor_frete = Column(Numeric(15, 2), default=0)
    valor_desconto = Column(Numeric(15, 2), default=0)
    numero_ecommerce = Column(String(64))
    numero_venda = Column(String(64))
    empresa = Column(String(100))
    cidade = Column(String(255))
    uf = Column(String(2))
    codigo_rastreamento = Column(String(100))
    url_rastreamento = Column(Text)
    obs = Column(Text)
    # written by back-office actions only, never by sync
    obs_interna = Column(Text)
    integration_account_id = Column(String(36), ForeignKey(
        'integration_accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    last_updated = Column(String(40))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ItemPedido(Base):
    __tablename__ = "itens_pedidos"
    __table_args__ = (
        UniqueConstraint("pedido_id", "sku", name="uq_itens_pedidos_pedido_sku"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    pedido_id = Column(String(64), ForeignKey(
        'pedidos.id', ondelete='CASCADE'), nullable=False, index=True)
    sku = Column(String(255), nullable=False)
    descricao = Column(Text)
    quantidade = Column(Integer, nullable=False, default=1)
    valor_unitario = Column(Numeric(15, 2), default=0)
    valor_total = Column(Numeric(15, 2), default=0)
    integration_account_id = Column(String(36))


class MapeamentoDepara(Base):
    __tablename__ = "mapeamentos_depara"

    id = Column(String(36), primary_key=True, default=_uuid)
    sku_pedido = Column(String(255), nullable=False, index=True)
    sku_correspondente = Column(String(255))
    sku_simples = Column(String(255))
    quantidade = Column(Integer, default=1)
    ativo = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Produto(Base):
    __tablename__ = "produtos"

    id = Column(String(36), primary_key=True, default=_uuid)
    sku_interno = Column(String(255), nullable=False, unique=True)
    nome = Column(String(255))
    quantidade_atual = Column(Integer, nullable=False, default=0)
    ultima_movimentacao = Column(DateTime(timezone=True))


class HistoricoVenda(Base):
    __tablename__ = "historico_vendas"

    id = Column(String(36), primary_key=True, default=_uuid)
    id_unico = Column(String(128), nullable=False, unique=True)
    numero_pedido = Column(String(64))
    sku_produto = Column(Text)
    sku_estoque = Column(Text)
    quantidade = Column(Integer, default=0)
    total_itens = Column(Integer, default=0)
    valor_total = Column(Numeric(15, 2), default=0)
    cliente_nome = Column(String(255))
    data_pedido = Column(String(10))
    status = Column(String(32), default="baixado")
    integration_account_id = Column(String(36), index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
