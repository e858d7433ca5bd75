"""
Serializers for the Task Board client.

These validate form input before anything is sent to the task-management
API (required fields, date ordering, progress range) and translate the
validated snake_case data into the camelCase payloads the API expects.
"""

from rest_framework import serializers

from .domain import DependencyType, ProjectStatus, TaskStatus


TASK_STATUS_CHOICES = [(s.value, s.value.replace('_', ' ').title()) for s in TaskStatus]
DEPENDENCY_TYPE_CHOICES = [(t.value, t.name.replace('_', ' ').title()) for t in DependencyType]
PROJECT_STATUS_CHOICES = [(s.value, s.value.title()) for s in ProjectStatus]

TASK_SORT_FIELDS = {
    'taskCode': 'task_code',
    'name': 'name',
    'startDate': 'start_date',
    'endDate': 'end_date',
    'progress': 'progress',
    'status': 'status',
}

TASK_WIRE_FIELDS = {
    'task_code': 'taskCode',
    'name': 'name',
    'assignee': 'assignee',
    'start_date': 'startDate',
    'end_date': 'endDate',
    'progress': 'progress',
    'status': 'status',
    'parent_task_id': 'parentTaskId',
    'is_milestone': 'isMilestone',
    'notes': 'notes',
}


def _iso(value):
    return value.isoformat() if hasattr(value, 'isoformat') else value


def to_wire(validated_data: dict, field_map: dict) -> dict:
    """Rename validated fields to API keys, dropping blanks and serializing dates."""
    payload = {}
    for key, wire_key in field_map.items():
        if key not in validated_data:
            continue
        value = validated_data[key]
        if value is None or value == '':
            continue
        payload[wire_key] = _iso(value)
    return payload


class ProjectInputSerializer(serializers.Serializer):
    """Validates project create/update forms."""

    name = serializers.CharField(max_length=255, required=True)
    start_date = serializers.DateField(required=False, allow_null=True)
    end_date = serializers.DateField(required=False, allow_null=True)
    status = serializers.ChoiceField(
        choices=PROJECT_STATUS_CHOICES,
        default=ProjectStatus.ACTIVE.value,
        required=False
    )

    def validate_name(self, value):
        """Ensure name is not empty or just whitespace."""
        if not value or not value.strip():
            raise serializers.ValidationError("Project name is required")
        return value.strip()

    def validate(self, attrs):
        start = attrs.get('start_date')
        end = attrs.get('end_date')
        if start and end and start > end:
            raise serializers.ValidationError({'end_date': 'End date must be after start date'})
        return attrs

    def to_wire(self) -> dict:
        return to_wire(self.validated_data, {
            'name': 'name',
            'start_date': 'startDate',
            'end_date': 'endDate',
            'status': 'status',
        })


class TaskInputSerializer(serializers.Serializer):
    """
    Validates the task create/edit form.

    On partial updates (``partial=True``) only the submitted fields are
    checked; date ordering is still enforced when both dates are present.
    """

    task_code = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    name = serializers.CharField(max_length=255, required=True)
    assignee = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)
    start_date = serializers.DateField(
        required=True,
        error_messages={'required': 'Start date is required'}
    )
    end_date = serializers.DateField(
        required=True,
        error_messages={'required': 'End date is required'}
    )
    progress = serializers.IntegerField(
        required=False,
        default=0,
        min_value=0,
        max_value=100,
        error_messages={
            'min_value': 'Progress must be between 0 and 100',
            'max_value': 'Progress must be between 0 and 100',
        }
    )
    status = serializers.ChoiceField(
        choices=TASK_STATUS_CHOICES,
        default=TaskStatus.PLANNED.value,
        required=False
    )
    parent_task_id = serializers.IntegerField(required=False, allow_null=True)
    is_milestone = serializers.BooleanField(required=False, default=False)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate_name(self, value):
        """Ensure name is not empty or just whitespace."""
        if not value or not value.strip():
            raise serializers.ValidationError("Task name is required")
        return value.strip()

    def validate(self, attrs):
        start = attrs.get('start_date')
        end = attrs.get('end_date')
        if start and end and start > end:
            raise serializers.ValidationError({'end_date': 'End date must be after start date'})
        return attrs

    def to_wire(self) -> dict:
        return to_wire(self.validated_data, TASK_WIRE_FIELDS)


class ChartRowUpdateSerializer(serializers.Serializer):
    """Fields a chart edit (drag, resize, rename) can change."""

    title = serializers.CharField(max_length=255, required=False)
    start = serializers.DateField(required=False)
    end = serializers.DateField(required=False)
    progress = serializers.IntegerField(required=False, min_value=0, max_value=100)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Nothing to update")
        start = attrs.get('start')
        end = attrs.get('end')
        if start and end and start > end:
            raise serializers.ValidationError({'end': 'End date must be after start date'})
        return attrs


class DependencyInputSerializer(serializers.Serializer):
    """
    A new dependency, either one edge or a chart dependency string.

    Exactly one of ``predecessor_task_id`` or ``dependencies`` must be given.
    """

    predecessor_task_id = serializers.IntegerField(required=False)
    type = serializers.ChoiceField(
        choices=DEPENDENCY_TYPE_CHOICES,
        default=DependencyType.FINISH_TO_START.value,
        required=False
    )
    dependencies = serializers.CharField(required=False, allow_blank=False)

    def to_internal_value(self, data):
        # The chart posts camelCase like the API does.
        if hasattr(data, 'get') and 'predecessorTaskId' in data and 'predecessor_task_id' not in data:
            data = dict(data.items())
            data['predecessor_task_id'] = data.pop('predecessorTaskId')
        return super().to_internal_value(data)

    def validate(self, attrs):
        has_single = attrs.get('predecessor_task_id') is not None
        has_string = bool(attrs.get('dependencies'))
        if has_single == has_string:
            raise serializers.ValidationError(
                "Provide either predecessor_task_id or a dependencies string"
            )
        return attrs


class TaskQuerySerializer(serializers.Serializer):
    """Query parameters of the task table and the chart."""

    status = serializers.ChoiceField(choices=TASK_STATUS_CHOICES, required=False)
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)
    sort = serializers.ChoiceField(choices=list(TASK_SORT_FIELDS.keys()), default='startDate', required=False)
    order = serializers.ChoiceField(choices=['asc', 'desc'], default='asc', required=False)

    def to_internal_value(self, data):
        data = {key: value for key, value in data.items() if value != ''}
        if 'from' in data:
            data['date_from'] = data.pop('from')
        if 'to' in data:
            data['date_to'] = data.pop('to')
        return super().to_internal_value(data)

    def validate(self, attrs):
        date_from = attrs.get('date_from')
        date_to = attrs.get('date_to')
        if date_from and date_to and date_from > date_to:
            raise serializers.ValidationError({'date_to': 'End of range must be after its start'})
        return attrs
