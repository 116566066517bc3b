"""
Tenant serializers for REST API endpoints.
"""
from rest_framework import serializers

from apps.tenants.models import Project


class ProjectSerializer(serializers.ModelSerializer):
    """Serializer for a project listed under its organisation."""

    class Meta:
        model = Project
        fields = ['id', 'organisation', 'name', 'reference', 'status', 'created_at']
        read_only_fields = ['id', 'organisation', 'created_at']


class CreateProjectSerializer(serializers.ModelSerializer):
    """Serializer for creating a project in an organisation."""

    class Meta:
        model = Project
        fields = ['name', 'reference', 'status']

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Project name is required.")
        return value
