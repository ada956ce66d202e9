from django.urls import path

from charge_planner import views

urlpatterns = [
    path("api/v1/health", views.health_view, name="health"),
    path("api/v1/charging-plan", views.charging_plan_view, name="charging-plan"),
    path("api/v1/stations", views.station_search_view, name="station-search"),
]
