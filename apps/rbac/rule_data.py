"""
Default permission matrix.

Role lists are project role names or group names from the role catalog
(ALL_ROLES, MANAGERS, SUPPLIER_SIDE, CUSTOMER_SIDE, WORKERS, ADMIN_ONLY).
Organisation-scoped entries name organisation roles.

Swap the whole matrix with settings.ACCESS_RULES.
"""
from apps.rbac.context import PLATFORM_SUPERUSER
from apps.rbac.roles import ORGANISATION_SCOPE

ALL_ROLES = 'ALL_ROLES'
MANAGERS = 'MANAGERS'
SUPPLIER_SIDE = 'SUPPLIER_SIDE'
CUSTOMER_SIDE = 'CUSTOMER_SIDE'
WORKERS = 'WORKERS'
ADMIN_ONLY = 'ADMIN_ONLY'

ORG_MEMBERS = ('org_admin', 'supplier_pm', 'org_member')
ORG_ADMINS = ('org_admin', 'supplier_pm')
ORG_OWNER = ('org_admin',)

OWNER = 'created_by_id'


def _owned(roles, status, self_service=WORKERS):
    """Rule where the creator may act while the row is in one of status."""
    return {
        'roles': roles,
        'ownership_field': OWNER,
        'self_service': self_service,
        'status': status,
    }


def _workflow(rule, required):
    """Rule that no role may apply outside the required statuses."""
    if not isinstance(rule, dict):
        rule = {'roles': rule}
    return {**rule, 'requires_status': required}


def _org(roles):
    return {'roles': roles, 'scope': ORGANISATION_SCOPE}


_WORK_ENTRY = {
    'view': ALL_ROLES,
    'create': WORKERS,
    'create_for_others': SUPPLIER_SIDE,
    'edit': _owned(SUPPLIER_SIDE, ('Draft', 'Rejected')),
    'submit': _workflow(_owned(SUPPLIER_SIDE, ('Draft', 'Rejected')), ('Draft', 'Rejected')),
    'delete': _owned(SUPPLIER_SIDE, ('Draft',)),
    'approve': CUSTOMER_SIDE,
}


DEFAULT_RULES = {
    'timesheets': dict(_WORK_ENTRY),
    'expenses': {
        **_WORK_ENTRY,
        # Chargeable expenses are validated by the customer, the rest by the supplier
        'validate': _workflow({
            'roles': CUSTOMER_SIDE,
            'roles_by_attribute': (
                'chargeable_to_customer',
                {True: CUSTOMER_SIDE, False: SUPPLIER_SIDE, None: CUSTOMER_SIDE},
            ),
        }, ('Submitted',)),
    },
    'milestones': {
        'view': ALL_ROLES,
        'create': SUPPLIER_SIDE,
        'edit': SUPPLIER_SIDE,
        'use_gantt': SUPPLIER_SIDE,
        'edit_billing': SUPPLIER_SIDE,
        'delete': ADMIN_ONLY,
    },
    'deliverables': {
        'view': ALL_ROLES,
        'create': ('supplier_pm', 'contributor'),
        'edit': ('supplier_pm', 'contributor'),
        'submit': ('supplier_pm', 'contributor'),
        'delete': SUPPLIER_SIDE,
        'review': CUSTOMER_SIDE,
        'mark_delivered': CUSTOMER_SIDE,
    },
    'deliverable_kpi_links': {
        'view': ALL_ROLES,
        'manage': ('supplier_pm', 'contributor'),
    },
    'kpis': {
        'view': ALL_ROLES,
        'create': SUPPLIER_SIDE,
        'edit': SUPPLIER_SIDE,
        'delete': SUPPLIER_SIDE,
    },
    'resources': {
        'view': ALL_ROLES,
        'manage': SUPPLIER_SIDE,
        'see_cost_price': SUPPLIER_SIDE,
        'delete': ADMIN_ONLY,
    },
    'variations': {
        'view': ALL_ROLES,
        'create': SUPPLIER_SIDE,
        'edit': SUPPLIER_SIDE,
        'delete': SUPPLIER_SIDE,
        'submit': SUPPLIER_SIDE,
        'sign_as_supplier': SUPPLIER_SIDE,
        'sign_as_customer': CUSTOMER_SIDE,
        'reject': MANAGERS,
        'apply': SUPPLIER_SIDE,
    },
    'variation_milestones': {
        'view': ALL_ROLES,
        'manage': SUPPLIER_SIDE,
    },
    'variation_deliverables': {
        'view': ALL_ROLES,
        'manage': SUPPLIER_SIDE,
    },
    'partners': {
        'view': SUPPLIER_SIDE,
        'create': SUPPLIER_SIDE,
        'edit': SUPPLIER_SIDE,
        'delete': SUPPLIER_SIDE,
    },
    'partner_invoices': {
        'view': SUPPLIER_SIDE,
        'create': SUPPLIER_SIDE,
        'edit': SUPPLIER_SIDE,
        'delete': SUPPLIER_SIDE,
        'view_margins': {'global_role': PLATFORM_SUPERUSER},
    },
    'partner_invoice_lines': {
        'view': SUPPLIER_SIDE,
        'manage': SUPPLIER_SIDE,
        'view_margins': {'global_role': PLATFORM_SUPERUSER},
    },
    'raid_items': {
        'view': ALL_ROLES,
        'create': MANAGERS,
        'edit': MANAGERS,
        'manage': MANAGERS,
        'assign_owner': MANAGERS,
        # The creator keeps status updates on their own item
        'update_status': _owned(MANAGERS, None, self_service=ALL_ROLES),
        'delete': SUPPLIER_SIDE,
    },
    'projects': {
        'view': ALL_ROLES,
        'access_settings': SUPPLIER_SIDE,
        'edit_settings': SUPPLIER_SIDE,
        'view_reports': MANAGERS,
        'view_invoices': MANAGERS,
        'generate_certificates': MANAGERS,
    },
    'project_members': {
        'view': SUPPLIER_SIDE,
        'manage': ADMIN_ONLY,
        'create': ADMIN_ONLY,
        'edit': ADMIN_ONLY,
        'delete': ADMIN_ONLY,
    },
    'organisations': {
        'view': _org(ORG_MEMBERS),
        'edit': _org(ORG_ADMINS),
        'view_billing': _org(ORG_ADMINS),
        'manage_billing': _org(ORG_ADMINS),
    },
    # Projects as rows of their organisation: listing, creation, removal
    'organisation_projects': {
        'view': _org(ORG_MEMBERS),
        'create': _org(ORG_ADMINS),
        'delete': _org(ORG_OWNER),
        'assign_members': _org(ORG_ADMINS),
    },
    'organisation_settings': {
        'view': _org(ORG_ADMINS),
        'edit': _org(ORG_ADMINS),
        'manage_features': _org(ORG_ADMINS),
        'manage_branding': _org(ORG_ADMINS),
    },
    'organisation_members': {
        'view': _org(ORG_MEMBERS),
        'invite': _org(ORG_ADMINS),
        'remove': _org(ORG_ADMINS),
        'change_role': _org(ORG_ADMINS),
        'deactivate': _org(ORG_ADMINS),
        'reactivate': _org(ORG_ADMINS),
    },
}
