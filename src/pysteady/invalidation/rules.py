"""The application's invalidation rule table.

New entity types are added here as data. Every resource is the path of
the list endpoint whose cached result depends on the entity.
"""

from pysteady.invalidation.graph import InstanceKey, InvalidationRule

RESIDENTS = "/api/residents"
RESIDENTS_AT_RISK = "/api/residents/at-risk"
PROPERTIES = "/api/properties"
PROPERTY_ROOMS = "/api/property-rooms"
SUPPORT_PLANS = "/api/support-plans"
PROGRESS_TRACKING = "/api/progress-tracking"
INCIDENTS = "/api/incidents"
MAINTENANCE_REQUESTS = "/api/maintenance-requests"
FINANCIAL_RECORDS = "/api/financial-records"
INVOICES = "/api/invoices"
BILLING_PERIODS = "/api/billing-periods"
BILLING_ANALYTICS = "/api/billing/analytics"
GOVERNMENT_CLIENTS = "/api/government-clients"
STAFF_MEMBERS = "/api/staff-members"
DASHBOARD_METRICS = "/api/dashboard/metrics"
ACTIVITIES = "/api/activities"

DASHBOARD_RESOURCES = (DASHBOARD_METRICS, ACTIVITIES)
"""Aggregate views refreshed by ResilientClient.refresh_dashboard()."""

DEFAULT_RULES = (
    InvalidationRule(
        "resident",
        collections=(
            RESIDENTS,
            RESIDENTS_AT_RISK,
            SUPPORT_PLANS,
            PROGRESS_TRACKING,
            INCIDENTS,
            DASHBOARD_METRICS,
            ACTIVITIES,
            BILLING_PERIODS,
            INVOICES,
        ),
        instances=(
            InstanceKey(RESIDENTS),
            InstanceKey(SUPPORT_PLANS, by="residentId"),
            InstanceKey(PROGRESS_TRACKING, by="residentId"),
            InstanceKey(BILLING_PERIODS, by="residentId"),
        ),
    ),
    InvalidationRule(
        "property",
        collections=(
            PROPERTIES,
            RESIDENTS,
            INCIDENTS,
            MAINTENANCE_REQUESTS,
            PROPERTY_ROOMS,
            DASHBOARD_METRICS,
            ACTIVITIES,
            FINANCIAL_RECORDS,
        ),
        instances=(
            InstanceKey(PROPERTIES),
            InstanceKey(RESIDENTS, by="propertyId"),
            InstanceKey(PROPERTY_ROOMS, by="propertyId"),
            InstanceKey(MAINTENANCE_REQUESTS, by="propertyId"),
        ),
    ),
    InvalidationRule(
        "support-plan",
        collections=(SUPPORT_PLANS, RESIDENTS, PROGRESS_TRACKING, ACTIVITIES, DASHBOARD_METRICS),
        instances=(InstanceKey(SUPPORT_PLANS),),
    ),
    InvalidationRule(
        "incident",
        collections=(
            INCIDENTS,
            RESIDENTS,
            PROPERTIES,
            DASHBOARD_METRICS,
            ACTIVITIES,
            RESIDENTS_AT_RISK,
        ),
        instances=(InstanceKey(INCIDENTS),),
    ),
    InvalidationRule(
        "financial-record",
        collections=(FINANCIAL_RECORDS, DASHBOARD_METRICS, ACTIVITIES, BILLING_ANALYTICS),
        instances=(InstanceKey(FINANCIAL_RECORDS),),
    ),
    InvalidationRule(
        "invoice",
        collections=(
            INVOICES,
            BILLING_ANALYTICS,
            GOVERNMENT_CLIENTS,
            RESIDENTS,
            ACTIVITIES,
            DASHBOARD_METRICS,
        ),
        instances=(InstanceKey(INVOICES),),
    ),
    InvalidationRule(
        "maintenance-request",
        collections=(MAINTENANCE_REQUESTS, PROPERTIES, INCIDENTS, ACTIVITIES, DASHBOARD_METRICS),
        instances=(InstanceKey(MAINTENANCE_REQUESTS),),
    ),
    InvalidationRule(
        "staff-member",
        collections=(STAFF_MEMBERS, SUPPORT_PLANS, INCIDENTS, ACTIVITIES, DASHBOARD_METRICS),
        instances=(InstanceKey(STAFF_MEMBERS),),
    ),
    InvalidationRule(
        "government-client",
        collections=(
            GOVERNMENT_CLIENTS,
            INVOICES,
            BILLING_PERIODS,
            BILLING_ANALYTICS,
            DASHBOARD_METRICS,
        ),
        instances=(InstanceKey(GOVERNMENT_CLIENTS),),
    ),
    InvalidationRule(
        "activity",
        collections=(ACTIVITIES, DASHBOARD_METRICS),
    ),
)
