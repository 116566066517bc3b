"""
Policy engine: the single entry point for access decisions.

    decision = get_policy_engine().can(ctx, 'delete', ResourceRef('timesheets', ts.id))
    if not decision.allowed:
        ...

can() returns a Decision for every ordinary outcome, allow or deny. It
raises only when a decision cannot be made: no identity, a missing rule,
an unresolvable resource, or an unavailable store.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from apps.core.exceptions import AccessDenied, AmbiguousResource, AuthenticationRequired
from apps.rbac.audit import AuditRecord, AuditSink, get_audit_sink
from apps.rbac.context import ResourceRef, UserContext
from apps.rbac.decision_cache import DecisionCache
from apps.rbac.membership import EffectiveAccess, MembershipStore
from apps.rbac.resolver import ResolvedResource, ResourceResolver
from apps.rbac.roles import ORGANISATION_SCOPE
from apps.rbac.rules import RuleSpec, RuleTable, get_rule_table

logger = logging.getLogger(__name__)

ALLOW = 'allow'
DENY = 'deny'
FAIL = 'fail'
SKIP = 'skip'
NOT_APPLICABLE = 'n/a'

CLAUSE_GLOBAL_ROLE = 'global_role'
CLAUSE_TENANCY = 'tenancy'
CLAUSE_OWNERSHIP = 'ownership'
CLAUSE_STATUS = 'status'
CLAUSE_ROLE_SET = 'role_set'


@dataclass(frozen=True)
class Decision:
    """Outcome of one access check. reason is safe to show to the caller."""

    allowed: bool
    reason: str
    rule: str = ''

    def __bool__(self):
        return self.allowed


@dataclass(frozen=True)
class TraceStep:
    clause: str
    outcome: str
    detail: str = ''


@dataclass(frozen=True)
class Trace:
    """Every clause considered for a decision, in evaluation order."""

    decision: Decision
    steps: Tuple[TraceStep, ...]
    effective: Optional[EffectiveAccess] = None
    resource: Optional[ResolvedResource] = None

    def as_dict(self):
        return {
            'allowed': self.decision.allowed,
            'reason': self.decision.reason,
            'rule': self.decision.rule,
            'effective_role': self.effective.effective_role if self.effective else None,
            'steps': [
                {'clause': step.clause, 'outcome': step.outcome, 'detail': step.detail}
                for step in self.steps
            ],
        }


class PolicyEngine:
    """
    Evaluates RuleSpecs against resolved resources and effective access.

    Clauses run in a fixed order:
        1. global role (decides on its own when the rule has one)
        2. ownership
        3. status (only together with ownership)
        4. role set (elevated access always passes)
    Between 1 and 2 the caller must have effective access to the tenant,
    and the row must be in one of the rule's required statuses, if any.
    """

    def __init__(self, rules: RuleTable, resolver: ResourceResolver,
                 store: MembershipStore, audit_sink: Optional[AuditSink] = None):
        self.rules = rules
        self.resolver = resolver
        self.store = store
        self.audit_sink = audit_sink

    def can(self, ctx: UserContext, action: str, ref: ResourceRef) -> Decision:
        """
        Decide whether ctx may perform action on ref.

        Raises:
            AuthenticationRequired: no verified identity
            UnknownRule: no rule for (resource type, action)
            AmbiguousResource: resource cannot be mapped to one tenant
            StoreUnavailable: membership or resource store failure
        """
        trace = self._evaluate(ctx, action, ref)
        self._emit(ctx, action, ref, trace)
        return trace.decision

    def explain(self, ctx: UserContext, action: str, ref: ResourceRef) -> Trace:
        """Same evaluation as can(), returning every clause considered. Not audited."""
        return self._evaluate(ctx, action, ref)

    def require(self, ctx: UserContext, action: str, ref: ResourceRef) -> Decision:
        """can() that raises AccessDenied on a deny."""
        decision = self.can(ctx, action, ref)
        if not decision.allowed:
            raise AccessDenied(decision.reason, rule=decision.rule)
        return decision

    # ------------------------------------------------------------------

    def _evaluate(self, ctx, action, ref) -> Trace:
        if ctx is None or ctx.user_id is None:
            raise AuthenticationRequired("Authentication required")

        rule = self.rules.get(ref.resource_type, action)
        resource = self.resolver.resolve(ref)
        if resource.scope != rule.scope:
            raise AmbiguousResource(
                f"Rule {rule.rule_id} is {rule.scope} scoped but the resource resolves to a {resource.scope}",
                details={'rule': rule.rule_id, 'resource_type': ref.resource_type}
            )

        steps = []

        # 1. Global role
        if rule.global_role is not None:
            if rule.global_role in ctx.platform_roles:
                steps.append(TraceStep(CLAUSE_GLOBAL_ROLE, ALLOW, f"has platform role {rule.global_role}"))
                return self._finish(rule, resource, None, steps, True, "Allowed by platform role")
            steps.append(TraceStep(CLAUSE_GLOBAL_ROLE, DENY, f"requires platform role {rule.global_role}"))
            return self._finish(rule, resource, None, steps, False,
                                "Restricted to platform administrators")
        steps.append(TraceStep(CLAUSE_GLOBAL_ROLE, NOT_APPLICABLE))

        # Tenancy
        if resource.scope == ORGANISATION_SCOPE:
            effective = self.store.resolve_organisation(ctx, resource.tenant_id)
            tenant_label = 'organisation'
        else:
            effective = self.store.resolve_effective(ctx, resource.tenant_id)
            tenant_label = 'project'

        if not effective.present:
            steps.append(TraceStep(CLAUSE_TENANCY, DENY, effective.reason))
            return self._finish(rule, resource, effective, steps, False,
                                f"No access to {tenant_label} ({effective.reason})")
        steps.append(TraceStep(CLAUSE_TENANCY, ALLOW, effective.reason))

        # Workflow status binds every role, elevated access included
        if rule.required_status is not None:
            status = resource.attributes.get(rule.status_field)
            if status not in rule.required_status:
                steps.append(TraceStep(CLAUSE_STATUS, DENY,
                                       f"status {status} not in {sorted(rule.required_status)}"))
                return self._finish(rule, resource, effective, steps, False,
                                    f"Cannot {action} {ref.resource_type} in status {status}")

        role = effective.org_role if resource.scope == ORGANISATION_SCOPE else effective.project_role

        # 2. Ownership and 3. status
        owner_ok = self._ownership(rule, resource, ctx, role, steps)
        if owner_ok and rule.status_override is None:
            return self._finish(rule, resource, effective, steps, True, "Allowed as owner")
        if self._status(rule, resource, owner_ok, steps):
            return self._finish(rule, resource, effective, steps, True,
                                "Allowed as owner in the current status")

        # 4. Role set
        if effective.elevated:
            steps.append(TraceStep(CLAUSE_ROLE_SET, ALLOW, effective.reason))
            return self._finish(rule, resource, effective, steps, True, "Allowed by elevated access")

        allowed_roles = rule.roles_for(resource.attributes)
        if role in allowed_roles:
            steps.append(TraceStep(CLAUSE_ROLE_SET, ALLOW, f"role {role} permitted"))
            return self._finish(rule, resource, effective, steps, True, f"Allowed for role {role}")
        steps.append(TraceStep(CLAUSE_ROLE_SET, FAIL, f"role {role} not permitted"))

        failed = [step.clause for step in steps if step.outcome == FAIL]
        return self._finish(
            rule, resource, effective, steps, False,
            f"Role {role} cannot {action} {ref.resource_type} (failed: {', '.join(failed)})"
        )

    def _ownership(self, rule: RuleSpec, resource, ctx, role, steps) -> bool:
        if rule.ownership_field is None:
            steps.append(TraceStep(CLAUSE_OWNERSHIP, NOT_APPLICABLE))
            return False

        owner_id = resource.attributes.get(rule.ownership_field)
        if owner_id is None or str(owner_id) != str(ctx.user_id):
            steps.append(TraceStep(CLAUSE_OWNERSHIP, FAIL, "not the owner"))
            return False
        if role not in rule.self_service_roles:
            steps.append(TraceStep(CLAUSE_OWNERSHIP, FAIL, f"owner, but role {role} cannot self-serve"))
            return False

        if rule.status_override is None:
            steps.append(TraceStep(CLAUSE_OWNERSHIP, ALLOW, "owner"))
        else:
            steps.append(TraceStep(CLAUSE_OWNERSHIP, SKIP, "owner; status decides"))
        return True

    def _status(self, rule: RuleSpec, resource, owner_ok, steps) -> bool:
        if rule.status_override is None:
            if rule.required_status is not None:
                steps.append(TraceStep(CLAUSE_STATUS, ALLOW,
                                       f"status {resource.attributes.get(rule.status_field)}"))
            else:
                steps.append(TraceStep(CLAUSE_STATUS, NOT_APPLICABLE))
            return False
        if not owner_ok:
            steps.append(TraceStep(CLAUSE_STATUS, SKIP, "ownership not established"))
            return False

        status = resource.attributes.get(rule.status_field)
        if status in rule.status_override:
            steps.append(TraceStep(CLAUSE_STATUS, ALLOW, f"status {status}"))
            return True
        steps.append(TraceStep(CLAUSE_STATUS, FAIL, f"status {status} not in {sorted(rule.status_override)}"))
        return False

    def _finish(self, rule, resource, effective, steps, allowed, reason) -> Trace:
        return Trace(
            decision=Decision(allowed=allowed, reason=reason, rule=rule.rule_id),
            steps=tuple(steps),
            effective=effective,
            resource=resource,
        )

    def _emit(self, ctx, action, ref, trace):
        decision = trace.decision
        if not decision.allowed:
            logger.info(
                f"Access denied: {action} on {ref.resource_type}",
                extra={
                    'user_id': str(ctx.user_id),
                    'action': action,
                    'resource_type': ref.resource_type,
                    'resource_id': str(ref.resource_id) if ref.resource_id else None,
                    'rule': decision.rule,
                    'request_id': ctx.request_id,
                }
            )
        if self.audit_sink is None:
            return
        try:
            self.audit_sink.record(AuditRecord(
                user_id=ctx.user_id,
                action=action,
                resource_type=ref.resource_type,
                resource_id=ref.resource_id,
                allowed=decision.allowed,
                reason=decision.reason,
                matched_rule=decision.rule,
                request_id=ctx.request_id,
            ))
        except Exception as e:
            logger.error(
                f"Audit sink failed: {str(e)}",
                extra={'action': action, 'resource_type': ref.resource_type, 'request_id': ctx.request_id},
                exc_info=True
            )


_engine = None


def get_policy_engine() -> PolicyEngine:
    """
    Process-wide engine built from settings.

    Tests and callers with special needs construct PolicyEngine directly.
    """
    global _engine
    if _engine is None:
        _engine = PolicyEngine(
            rules=get_rule_table(),
            resolver=ResourceResolver(),
            store=MembershipStore(cache=DecisionCache()),
            audit_sink=get_audit_sink(),
        )
    return _engine


def reset_policy_engine():
    global _engine
    _engine = None
