"""initial payroll + attendance schema

Revision ID: a1f0c2d3e4b5
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1f0c2d3e4b5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=50), nullable=False, unique=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('state', sa.String(length=10), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('work_state', sa.String(length=10), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'code', name='uq_employee_org_code'),
    )
    op.create_index('ix_emp_org_id', 'employees', ['organization_id'])

    op.create_table(
        'shifts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.String(length=60), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('break_duration_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('late_threshold_minutes', sa.Integer(), nullable=False, server_default='15'),
        sa.Column('early_out_threshold_minutes', sa.Integer(), nullable=False, server_default='15'),
        sa.Column('duration_hours', sa.Numeric(4, 2), nullable=False, server_default='8'),
        sa.Column('is_overnight', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('weekly_off_days', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'name', name='uq_shift_org_name'),
        sa.CheckConstraint('duration_hours >= 4 AND duration_hours <= 12', name='ck_shift_duration_hours'),
    )
    op.create_index('ix_shifts_organization_id', 'shifts', ['organization_id'])

    op.create_table(
        'employee_shifts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('shift_id', sa.Integer(), sa.ForeignKey('shifts.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('effective_to', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_emp_shift_range', 'employee_shifts', ['employee_id', 'effective_from', 'effective_to'])

    op.create_table(
        'org_holidays',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_optional', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('applies_to_shifts', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'date', name='uq_org_holiday_date'),
    )

    op.create_table(
        'attendance',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('shift_id', sa.Integer(), sa.ForeignKey('shifts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('punch_in_time', sa.DateTime(), nullable=True),
        sa.Column('punch_out_time', sa.DateTime(), nullable=True),
        sa.Column('total_hours', sa.Numeric(6, 2), nullable=True),
        sa.Column('effective_hours', sa.Numeric(6, 2), nullable=True),
        sa.Column('is_late', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_early_leave', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_half_day', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_absent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_holiday', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_weekend', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_regularized', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='default'),
        sa.Column('latitude', sa.Numeric(9, 6), nullable=True),
        sa.Column('longitude', sa.Numeric(9, 6), nullable=True),
        sa.Column('distance_m', sa.Numeric(10, 2), nullable=True),
        sa.Column('ai_hydration_meta', sa.JSON(), nullable=True),
        sa.Column('ai_hydrated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('employee_id', 'date', name='uq_attendance_employee_date'),
        sa.CheckConstraint("source in ('default','manual','ai','compliance')", name='ck_attendance_source'),
    )
    op.create_index('ix_attendance_org_date', 'attendance', ['organization_id', 'date'])

    op.create_table(
        'attendance_monthly_overrides',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('month', sa.SmallInteger(), nullable=False),
        sa.Column('year', sa.SmallInteger(), nullable=False),
        sa.Column('present_days', sa.Numeric(5, 1), nullable=False, server_default='0'),
        sa.Column('half_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('absent_days', sa.Numeric(5, 1), nullable=False, server_default='0'),
        sa.Column('paid_leave_days', sa.Numeric(5, 1), nullable=False, server_default='0'),
        sa.Column('lop_days', sa.Numeric(5, 1), nullable=False, server_default='0'),
        sa.Column('late_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ot_hours', sa.Numeric(6, 2), nullable=False, server_default='0'),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='manual'),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('employee_id', 'month', 'year', name='uq_monthly_override_emp_period'),
        sa.CheckConstraint("source in ('manual','ai_suggested','ai_approved')", name='ck_monthly_override_source'),
    )

    component_type = sa.Enum('earning', 'deduction', 'statutory_deduction', 'employer_cost', name='pay_component_type_enum')
    op.create_table(
        'pay_components',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=50), nullable=False, unique=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('type', component_type, nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'employee_compensation',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=True),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('effective_to', sa.Date(), nullable=True),
        sa.Column('ctc_annual', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('pay_schedule', sa.String(length=20), nullable=False, server_default='monthly'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('compensation_payload', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_emp_comp_effective', 'employee_compensation', ['employee_id', 'effective_from', 'effective_to'])

    stat_type = sa.Enum('PF', 'ESI', 'PT', name='statconfig_type')
    op.create_table(
        'stat_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('type', stat_type, nullable=False),
        sa.Column('scope_organization_id', sa.Integer(), nullable=True),
        sa.Column('scope_state', sa.String(length=10), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('value_json', sa.JSON(), nullable=False),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('effective_to', sa.Date(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
    )
    op.create_index(
        'ix_statcfg_resolve', 'stat_configs',
        ['type', 'scope_state', 'scope_organization_id', 'effective_from', 'effective_to', 'priority'],
    )

    period_status = sa.Enum('draft', 'locked', 'finalized', name='payroll_period_status_enum')
    op.create_table(
        'payroll_periods',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('month', sa.SmallInteger(), nullable=False),
        sa.Column('year', sa.SmallInteger(), nullable=False),
        sa.Column('status', period_status, nullable=False, server_default='draft'),
        sa.Column('lock_at', sa.DateTime(), nullable=True),
        sa.Column('locked_by', sa.Integer(), nullable=True),
        sa.Column('finalized_at', sa.DateTime(), nullable=True),
        sa.Column('finalized_by', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('organization_id', 'month', 'year', name='uq_payroll_period_org_month'),
    )

    op.create_table(
        'payroll_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('payroll_period_id', sa.Integer(), sa.ForeignKey('payroll_periods.id', ondelete='CASCADE'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('snapshot', sa.JSON(), nullable=False),
        sa.Column('gross_earnings', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total_deductions', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('net_pay', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('employer_cost', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('pf_wages', sa.Numeric(14, 2), nullable=True),
        sa.Column('esic_wages', sa.Numeric(14, 2), nullable=True),
        sa.Column('pt_amount', sa.Numeric(14, 2), nullable=True),
        sa.Column('tds_amount', sa.Numeric(14, 2), nullable=True),
        sa.Column('attendance_summary', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='processed'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('payroll_period_id', 'employee_id', name='uq_payroll_run_period_employee'),
    )

    op.create_table(
        'attendance_ai_policies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('policy_name', sa.String(length=120), nullable=False),
        sa.Column('policy_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('instruction_text', sa.Text(), nullable=False),
        sa.Column('instruction_json', sa.JSON(), nullable=False),
        sa.Column('model_name', sa.String(length=80), nullable=False, server_default='gemini-2.5-flash'),
        sa.Column('confidence_score', sa.Numeric(4, 3), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status in ('draft','approved','active','retired')", name='ck_ai_policy_status'),
        sa.UniqueConstraint('organization_id', 'policy_name', 'policy_version', name='uq_ai_policy_version'),
    )
    op.create_index(
        'uq_ai_policy_one_active', 'attendance_ai_policies', ['organization_id'], unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index('ix_ai_policy_org_status', 'attendance_ai_policies', ['organization_id', 'status'])

    op.create_table(
        'attendance_ai_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('policy_id', sa.Integer(), sa.ForeignKey('attendance_ai_policies.id', ondelete='SET NULL'), nullable=True),
        sa.Column('run_type', sa.String(length=24), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=True),
        sa.Column('period_end', sa.Date(), nullable=True),
        sa.Column('input_snapshot', sa.JSON(), nullable=False),
        sa.Column('output_summary', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='running'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint("run_type in ('weekly_hydration','shift_compile','payroll_preview')", name='ck_ai_run_type'),
        sa.CheckConstraint("status in ('running','completed','failed')", name='ck_ai_run_status'),
    )
    op.create_index('ix_ai_runs_org_period', 'attendance_ai_runs', ['organization_id', 'period_start', 'period_end'])

    op.create_table(
        'attendance_ai_decisions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('run_id', sa.Integer(), sa.ForeignKey('attendance_ai_runs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='SET NULL'), nullable=True),
        sa.Column('attendance_id', sa.Integer(), sa.ForeignKey('attendance.id', ondelete='SET NULL'), nullable=True),
        sa.Column('decision_type', sa.String(length=24), nullable=False),
        sa.Column('decision_payload', sa.JSON(), nullable=False),
        sa.Column('source_priority', sa.String(length=16), nullable=False, server_default='ai'),
        sa.Column('confidence', sa.Numeric(4, 3), nullable=True),
        sa.Column('human_review_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('review_outcome', sa.String(length=16), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "decision_type in ('late_flag','holiday_flag','override_apply','ot_calc','attendance_status')",
            name='ck_ai_decision_type',
        ),
        sa.CheckConstraint("source_priority in ('compliance','manual','ai','default')", name='ck_ai_decision_source'),
    )
    op.create_index('ix_ai_decisions_review', 'attendance_ai_decisions', ['human_review_required', 'created_at'])
    op.create_index('ix_ai_decisions_run', 'attendance_ai_decisions', ['run_id', 'employee_id', 'attendance_id'])


def downgrade() -> None:
    op.drop_table('attendance_ai_decisions')
    op.drop_table('attendance_ai_runs')
    op.drop_index('uq_ai_policy_one_active', table_name='attendance_ai_policies')
    op.drop_table('attendance_ai_policies')
    op.drop_table('payroll_runs')
    op.drop_table('payroll_periods')
    op.drop_table('stat_configs')
    op.drop_table('employee_compensation')
    op.drop_table('pay_components')
    op.drop_table('attendance_monthly_overrides')
    op.drop_table('attendance')
    op.drop_table('org_holidays')
    op.drop_table('employee_shifts')
    op.drop_table('shifts')
    op.drop_table('employees')
    op.drop_table('organizations')

    bind = op.get_bind()
    for name in ('payroll_period_status_enum', 'statconfig_type', 'pay_component_type_enum'):
        sa.Enum(name=name).drop(bind, checkfirst=True)
