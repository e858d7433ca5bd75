"""
URL configuration for the planner app.
"""

from django.urls import path
from . import views

urlpatterns = [
    path('', views.api_info, name='api-info'),
    # Projects
    path('projects/', views.project_list, name='project-list'),
    path('projects/<int:project_id>/', views.project_detail, name='project-detail'),
    path('projects/<int:project_id>/tasks/', views.project_tasks, name='project-tasks'),
    path('projects/<int:project_id>/gantt/', views.project_gantt, name='project-gantt'),
    # Import workflow
    path('projects/<int:project_id>/import/', views.import_session, name='import-session'),
    path('projects/<int:project_id>/import/confirm/', views.import_confirm, name='import-confirm'),
    path('projects/<int:project_id>/import/errors.csv', views.import_error_report, name='import-error-report'),
    path('import/template.csv', views.import_template, name='import-template'),
    path('import-jobs/<int:job_id>/', views.import_job_detail, name='import-job-detail'),
    path('import-jobs/<int:job_id>/errors/', views.import_job_errors, name='import-job-errors'),
    # Tasks and dependencies
    path('tasks/<int:task_id>/', views.task_detail, name='task-detail'),
    path('tasks/<int:task_id>/chart-row/', views.task_chart_row, name='task-chart-row'),
    path('tasks/<int:task_id>/dependencies/', views.task_dependencies, name='task-dependencies'),
    path(
        'tasks/<int:task_id>/dependencies/<int:dependency_id>/',
        views.task_dependency_detail,
        name='task-dependency-detail'
    ),
]
