"""create_donation_tables

Revision ID: 4f2a9c1d7e10
Revises:
Create Date: 2025-10-20 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4f2a9c1d7e10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'programs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False, comment='项目名称'),
        sa.Column('slug', sa.String(length=255), nullable=True, comment='URL 标识'),
        sa.Column('target_amount', sa.Numeric(precision=15, scale=2), nullable=True, comment='目标金额'),
        sa.Column('collected_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='已募集金额（已入账捐赠之和）'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active', comment='项目状态'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
    )
    op.create_index('ix_programs_id', 'programs', ['id'], unique=False)

    op.create_table(
        'donations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('donation_code', sa.String(length=50), nullable=False, comment='捐赠编号'),
        sa.Column('program_id', sa.Integer(), nullable=True, comment='项目ID，为空表示普通基金'),
        sa.Column('donor_name', sa.String(length=255), nullable=False, comment='捐赠人姓名'),
        sa.Column('donor_email', sa.String(length=255), nullable=True, comment='捐赠人邮箱'),
        sa.Column('donor_phone', sa.String(length=50), nullable=True, comment='捐赠人电话'),
        sa.Column('is_anonymous', sa.Boolean(), nullable=False, server_default=sa.false(), comment='是否匿名'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='捐赠金额'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='状态: pending/paid/failed/expired'),
        sa.Column('payment_source', sa.String(length=20), nullable=False, comment='来源: manual/gateway'),
        sa.Column('payment_method', sa.String(length=100), nullable=True, comment='支付方式: snap/transfer/cash'),
        sa.Column('payment_channel', sa.String(length=255), nullable=True, comment='支付渠道/收款银行'),
        sa.Column('gateway_order_id', sa.String(length=100), nullable=True, comment='网关订单号'),
        sa.Column('gateway_transaction_id', sa.String(length=100), nullable=True, comment='网关交易ID'),
        sa.Column('gateway_va_numbers', sa.JSON(), nullable=True, comment='虚拟账号'),
        sa.Column('raw_gateway_payload', sa.JSON(), nullable=True, comment='最近一次网关原始报文'),
        sa.Column('manual_proof_path', sa.String(length=255), nullable=True, comment='转账凭证路径'),
        sa.Column('notes', sa.Text(), nullable=True, comment='备注'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='首次入账时间'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='更新时间'),
        sa.ForeignKeyConstraint(['program_id'], ['programs.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_donations_id', 'donations', ['id'], unique=False)
    op.create_index('ix_donations_donation_code', 'donations', ['donation_code'], unique=True)
    op.create_index('ix_donations_gateway_order_id', 'donations', ['gateway_order_id'], unique=True)
    op.create_index('ix_donations_gateway_transaction_id', 'donations', ['gateway_transaction_id'], unique=False)
    op.create_index('ix_donations_program_id', 'donations', ['program_id'], unique=False)
    op.create_index('ix_donations_status', 'donations', ['status'], unique=False)
    op.create_index('ix_donations_payment_source', 'donations', ['payment_source'], unique=False)
    op.create_index('ix_donations_created_at', 'donations', ['created_at'], unique=False)
    op.create_index('ix_donations_program_status', 'donations', ['program_id', 'status'], unique=False)
    op.create_index('ix_donations_status_created', 'donations', ['status', 'created_at'], unique=False)

    op.create_table(
        'donation_sequences',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('scope', sa.String(length=50), nullable=False, comment='计数范围（前缀+日期）'),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0', comment='最近一次分配的序号'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scope'),
    )


def downgrade() -> None:
    op.drop_table('donation_sequences')
    op.drop_index('ix_donations_status_created', table_name='donations')
    op.drop_index('ix_donations_program_status', table_name='donations')
    op.drop_index('ix_donations_created_at', table_name='donations')
    op.drop_index('ix_donations_payment_source', table_name='donations')
    op.drop_index('ix_donations_status', table_name='donations')
    op.drop_index('ix_donations_program_id', table_name='donations')
    op.drop_index('ix_donations_gateway_transaction_id', table_name='donations')
    op.drop_index('ix_donations_gateway_order_id', table_name='donations')
    op.drop_index('ix_donations_donation_code', table_name='donations')
    op.drop_index('ix_donations_id', table_name='donations')
    op.drop_table('donations')
    op.drop_index('ix_programs_id', table_name='programs')
    op.drop_table('programs')
