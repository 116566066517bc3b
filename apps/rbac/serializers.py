"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Access checks and explanations
- Users and memberships (organisation and project)
- Membership mutations (add, invite, role change, reactivation)
"""
from rest_framework import serializers

from apps.core.exceptions import UnknownRole, UnknownRule
from apps.rbac.context import ResourceRef
from apps.rbac.models import OrganisationMembership, ProjectMembership, User
from apps.rbac.roles import get_role_catalog


# ===== ACCESS CHECK SERIALIZERS =====

class AccessCheckSerializer(serializers.Serializer):
    """Serializer for access check and explain requests."""

    action = serializers.CharField(max_length=100)
    resource_type = serializers.CharField(max_length=100)
    resource_id = serializers.UUIDField(required=False, allow_null=True)
    project_id = serializers.UUIDField(required=False, allow_null=True)
    organisation_id = serializers.UUIDField(required=False, allow_null=True)
    attributes = serializers.DictField(required=False, default=dict)

    def validate(self, attrs):
        """Reject pairs the rule table does not define before asking the engine."""
        from apps.rbac.rules import get_rule_table

        try:
            get_rule_table().get(attrs['resource_type'], attrs['action'])
        except UnknownRule:
            raise serializers.ValidationError(
                {'action': f"Unknown action '{attrs['action']}' for resource type '{attrs['resource_type']}'."}
            )

        if not any(attrs.get(key) for key in ('resource_id', 'project_id', 'organisation_id')):
            raise serializers.ValidationError(
                "One of resource_id, project_id or organisation_id is required."
            )

        if attrs.get('resource_id') and attrs.get('attributes'):
            raise serializers.ValidationError(
                {'attributes': "Attributes are only accepted for resources that do not exist yet."}
            )
        return attrs

    def to_ref(self) -> ResourceRef:
        data = self.validated_data
        return ResourceRef(
            resource_type=data['resource_type'],
            resource_id=data.get('resource_id'),
            project_id=data.get('project_id'),
            organisation_id=data.get('organisation_id'),
            attributes=data.get('attributes') or {},
        )


class DecisionSerializer(serializers.Serializer):
    """Serializer for a Decision returned by the policy engine."""

    allowed = serializers.BooleanField()
    reason = serializers.CharField()


class TraceStepSerializer(serializers.Serializer):
    clause = serializers.CharField()
    outcome = serializers.CharField()
    detail = serializers.CharField(allow_blank=True)


class TraceSerializer(serializers.Serializer):
    """Serializer for an evaluation trace."""

    allowed = serializers.BooleanField()
    reason = serializers.CharField()
    rule = serializers.CharField()
    effective_role = serializers.CharField(allow_null=True)
    steps = TraceStepSerializer(many=True)


# ===== MEMBERSHIP SERIALIZERS =====

class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model."""

    full_name = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name', 'full_name', 'is_active']
        read_only_fields = fields

    def get_full_name(self, obj):
        return obj.get_full_name()


class ProjectMembershipSerializer(serializers.ModelSerializer):
    """Serializer for a project grant in team listings."""

    user = UserSerializer(read_only=True)
    role_label = serializers.SerializerMethodField()

    class Meta:
        model = ProjectMembership
        fields = ['id', 'project', 'user', 'role', 'role_label', 'is_dormant', 'created_at']
        read_only_fields = fields

    def get_role_label(self, obj):
        role = get_role_catalog().project_roles.get(obj.role)
        return role.label if role else obj.role


class OrganisationMembershipSerializer(serializers.ModelSerializer):
    """Serializer for an organisation membership."""

    user = UserSerializer(read_only=True)

    class Meta:
        model = OrganisationMembership
        fields = [
            'id', 'organisation', 'user', 'org_role', 'is_active',
            'deactivated_at', 'created_at',
        ]
        read_only_fields = fields


class _RoleField(serializers.CharField):
    """CharField validated against one scope of the role catalog."""

    def __init__(self, scope, **kwargs):
        self.scope = scope
        super().__init__(max_length=50, **kwargs)

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        try:
            return get_role_catalog().role(self.scope, value).name
        except UnknownRole:
            raise serializers.ValidationError(f"Unknown role '{value}'.")


class AddProjectMemberSerializer(serializers.Serializer):
    """Serializer for granting a role on a project."""

    user_id = serializers.UUIDField()
    role = _RoleField('project')

    def validate_user_id(self, value):
        if not User.objects.filter(id=value, is_active=True).exists():
            raise serializers.ValidationError("User not found.")
        return value


class InviteOrganisationMemberSerializer(serializers.Serializer):
    """Serializer for adding a user to an organisation."""

    user_id = serializers.UUIDField()
    org_role = _RoleField('organisation')

    def validate_user_id(self, value):
        if not User.objects.filter(id=value, is_active=True).exists():
            raise serializers.ValidationError("User not found.")
        return value


class ChangeProjectRoleSerializer(serializers.Serializer):
    role = _RoleField('project')


class ChangeOrganisationRoleSerializer(serializers.Serializer):
    org_role = _RoleField('organisation')


class ReactivateMemberSerializer(serializers.Serializer):
    restore_projects = serializers.BooleanField(default=False)
