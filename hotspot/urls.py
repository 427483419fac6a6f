from django.urls import path

from . import views

urlpatterns = [
    # Plans & walled garden
    path("plans", views.plan_list, name="plan-list"),
    path("plans/<uuid:plan_id>", views.plan_detail, name="plan-detail"),
    path("walled-gardens", views.walled_garden_list, name="walled-garden-list"),
    # Transactions
    path("transactions", views.transaction_list, name="transaction-list"),
    path(
        "transactions/initiate",
        views.initiate_transaction,
        name="transaction-initiate",
    ),
    path("transactions/callback", views.mpesa_callback, name="mpesa-callback"),
    path(
        "transactions/<uuid:transaction_id>",
        views.transaction_detail,
        name="transaction-detail",
    ),
]
