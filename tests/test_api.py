from conftest import sign_payment, sign_webhook, webhook_body


def verify(client, order_id, payment_id, user_id="u1", amount=500, **extra):
    body = {
        "orderId": order_id,
        "paymentId": payment_id,
        "signature": sign_payment(order_id, payment_id),
        "userId": user_id,
        "amount": amount,
    }
    body.update(extra)
    return client.post("/api/verify-payment", json=body)


# ─────────────────────────────
#   SERVICE
# ─────────────────────────────

def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_info(client):
    data = client.get("/api/info").json()
    assert data["gatewayKeyId"] == "rzp_test_key"
    assert data["endpoints"]["webhook"] == "POST /api/webhook"


# ─────────────────────────────
#   USERS
# ─────────────────────────────

def test_create_and_get_user(client):
    res = client.post("/api/users", json={"userId": "u1", "name": "Asha", "initialBudget": 5000})
    assert res.status_code == 201
    body = res.json()
    assert body["user"]["id"] == "u1"
    assert body["user"]["totalSpent"] == 0
    assert body["budget"]["monthlyLimit"] == 5000

    res = client.get("/api/users/u1")
    assert res.status_code == 200
    assert res.json()["user"]["name"] == "Asha"


def test_create_user_conflict(client):
    assert client.post("/api/users", json={"userId": "u1"}).status_code == 201
    res = client.post("/api/users", json={"userId": "u1"})
    assert res.status_code == 409
    assert res.json() == {"success": False, "error": "User already exists"}


def test_create_user_requires_user_id(client):
    res = client.post("/api/users", json={"name": "No Id"})
    assert res.status_code == 400
    body = res.json()
    assert body["success"] is False
    assert body["details"]


def test_create_user_rejects_unknown_fields(client):
    res = client.post("/api/users", json={"userId": "u1", "isAdmin": True})
    assert res.status_code == 400


def test_get_unknown_user(client):
    res = client.get("/api/users/ghost")
    assert res.status_code == 404
    assert res.json()["error"] == "User not found"


# ─────────────────────────────
#   PAYMENTS
# ─────────────────────────────

def test_create_order(client, gateway):
    res = client.post("/api/create-order", json={"amount": 750, "userId": "u1", "category": "Food"})
    assert res.status_code == 200
    body = res.json()
    assert body["orderId"] == "order_1"
    assert body["amount"] == 750
    assert body["currency"] == "INR"
    assert body["gatewayPublicKey"] == "rzp_test_key"
    assert len(body["receipt"]) <= 40


def test_create_order_invalid_amount(client):
    assert client.post("/api/create-order", json={"amount": 0, "userId": "u1"}).status_code == 400
    assert client.post("/api/create-order", json={"amount": 10}).status_code == 400


def test_create_order_gateway_down(client, gateway):
    gateway.error = ConnectionError("gateway down")
    res = client.post("/api/create-order", json={"amount": 100, "userId": "u1"})
    assert res.status_code == 502
    assert res.json()["success"] is False


def test_verify_payment(client):
    res = verify(client, "order_1", "pay_1", category="Food", description="Lunch")
    assert res.status_code == 200
    body = res.json()
    assert body["applied"] is True
    assert body["transaction"]["id"] == "pay_1"
    assert body["transaction"]["status"] == "success"
    assert body["analysis"]["currentSpent"] == 500
    assert body["analysis"]["status"] == "excellent"
    assert body["user"]["totalSpent"] == 500


def test_verify_payment_accepts_checkout_field_names(client):
    res = client.post("/api/verify-payment", json={
        "razorpay_order_id": "order_9",
        "razorpay_payment_id": "pay_9",
        "razorpay_signature": sign_payment("order_9", "pay_9"),
        "userId": "u1",
        "amount": 120,
    })
    assert res.status_code == 200
    assert res.json()["transaction"]["orderId"] == "order_9"


def test_verify_payment_signature_mismatch_is_400(client):
    res = client.post("/api/verify-payment", json={
        "orderId": "order_a",
        "paymentId": "pay_a",
        "signature": "f" * 64,
        "userId": "u1",
        "amount": 500,
    })
    assert res.status_code == 400
    assert res.json()["error"] == "Payment verification failed - Invalid signature"
    assert client.get("/api/users/u1").status_code == 404


def test_verify_payment_missing_fields(client):
    res = client.post("/api/verify-payment", json={"orderId": "order_a", "userId": "u1", "amount": 10})
    assert res.status_code == 400


def test_verify_payment_twice_counts_once(client):
    verify(client, "order_1", "pay_1")
    res = verify(client, "order_1", "pay_1")
    assert res.status_code == 200
    assert res.json()["applied"] is False
    assert res.json()["user"]["totalSpent"] == 500


def test_webhook_replay_returns_200(client):
    verify(client, "order_1", "pay_1")
    raw = webhook_body("payment.captured", {
        "id": "pay_1",
        "amount": 50000,
        "notes": {"userId": "u1"},
    })

    res = client.post(
        "/api/webhook",
        content=raw,
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": sign_webhook(raw)},
    )

    assert res.status_code == 200
    assert res.json() == {"received": True, "event": "payment.captured", "handled": True, "applied": False}
    assert client.get("/api/users/u1").json()["user"]["totalSpent"] == 500


def test_webhook_unknown_event_returns_200(client):
    raw = webhook_body("subscription.charged")
    res = client.post("/api/webhook", content=raw, headers={"X-Razorpay-Signature": sign_webhook(raw)})
    assert res.status_code == 200
    assert res.json()["handled"] is False


def test_webhook_bad_signature_is_400(client):
    raw = webhook_body("payment.captured", {"id": "pay_1", "amount": 100, "notes": {"userId": "u1"}})
    res = client.post("/api/webhook", content=raw, headers={"X-Razorpay-Signature": "nope"})
    assert res.status_code == 400
    assert client.post("/api/webhook", content=raw).status_code == 400


# ─────────────────────────────
#   BUDGETS / READS
# ─────────────────────────────

def test_set_and_get_budget(client):
    assert client.get("/api/budget/u1").status_code == 404

    res = client.post("/api/set-budget", json={
        "userId": "u1",
        "monthlyLimit": 1000,
        "categories": {"Food": 400},
    })
    assert res.status_code == 200
    assert res.json()["budget"]["monthlyLimit"] == 1000
    assert res.json()["analysis"]["budgetLimit"] == 1000

    res = client.get("/api/budget/u1")
    assert res.status_code == 200
    assert res.json()["budget"]["categories"] == {"Food": 400}


def test_set_budget_rejects_non_positive_limit(client):
    res = client.post("/api/set-budget", json={"userId": "u1", "monthlyLimit": 0})
    assert res.status_code == 400


def test_dashboard_reflects_budget_and_alerts(client):
    client.post("/api/set-budget", json={"userId": "u1", "monthlyLimit": 1000, "categories": {"Food": 500}})
    verify(client, "order_1", "pay_1", amount=450, category="Food")
    verify(client, "order_2", "pay_2", amount=450, category="Travel")

    res = client.get("/api/dashboard/u1?days=7")
    assert res.status_code == 200
    body = res.json()
    assert body["analysis"]["status"] == "critical"
    assert body["analysis"]["riskLevel"] == "high"
    assert body["analysis"]["categoryAlerts"][0]["category"] == "Food"
    assert body["analysis"]["categoryAlerts"][0]["level"] == "warning"
    assert [t["id"] for t in body["user"]["recentTransactions"]] == ["pay_2", "pay_1"]
    assert body["spendingTrends"]["period"] == "7 days"
    assert body["spendingTrends"]["totalAmount"] == 900


def test_dashboard_unknown_user(client):
    assert client.get("/api/dashboard/ghost").status_code == 404


def test_transactions_pagination(client):
    for i in range(5):
        verify(client, f"order_{i}", f"pay_{i}", amount=10 + i)

    res = client.get("/api/transactions/u1?limit=2&offset=1")
    assert res.status_code == 200
    body = res.json()
    assert len(body["transactions"]) == 2
    assert body["pagination"] == {"total": 5, "limit": 2, "offset": 1, "hasMore": True}

    res = client.get("/api/transactions/u1?status=all&category=all")
    assert res.json()["pagination"]["total"] == 5

    assert client.get("/api/transactions/u1?limit=0").status_code == 400
    assert client.get("/api/transactions/u1?status=bogus").status_code == 400


def test_analytics(client):
    verify(client, "order_1", "pay_1", amount=300, category="Food")
    verify(client, "order_2", "pay_2", amount=100, category="Food")
    verify(client, "order_3", "pay_3", amount=200, category="Travel")

    res = client.get("/api/analytics/u1?period=30")
    assert res.status_code == 200
    body = res.json()
    assert body["overview"]["totalSpent"] == 600
    assert body["overview"]["totalTransactions"] == 3
    assert body["overview"]["averageTransaction"] == 200
    assert body["overview"]["budgetUtilization"] == "6.0%"
    assert body["categoryStats"][0] == {
        "category": "Food",
        "amount": 400,
        "percentage": 66.67,
        "transactionCount": 2,
    }
    assert sum(body["monthlyStats"].values()) == 600


def test_admin_stats_and_export(client):
    verify(client, "order_1", "pay_1", user_id="u1", amount=100)
    verify(client, "order_2", "pay_2", user_id="u2", amount=300)

    stats = client.get("/api/admin/stats").json()["stats"]
    assert stats["totalUsers"] == 2
    assert stats["activeUsers"] == 2
    assert stats["totalTransactions"] == 2
    assert stats["totalAmount"] == 400
    assert stats["averageTransactionAmount"] == 200

    snapshot = client.get("/api/admin/export").json()
    assert set(snapshot["users"]) == {"u1", "u2"}
    assert len(snapshot["payments"]) == 2


def test_webhook_captured_records_payment(client):
    raw = webhook_body("payment.captured", {
        "id": "pay_w",
        "amount": 25000,
        "notes": {"userId": "u1", "category": "Travel"},
    })
    res = client.post("/api/webhook", content=raw, headers={"X-Razorpay-Signature": sign_webhook(raw)})

    assert res.status_code == 200
    assert res.json() == {"received": True, "event": "payment.captured", "handled": True, "applied": True}
    assert client.get("/api/users/u1").json()["user"]["totalSpent"] == 250


def test_webhook_order_paid_returns_200(client):
    raw = webhook_body("order.paid")
    res = client.post("/api/webhook", content=raw, headers={"X-Razorpay-Signature": sign_webhook(raw)})
    assert res.status_code == 200
    assert res.json()["handled"] is True


def test_dashboard_recent_transactions_follow_timestamps(client):
    verify(client, "order_1", "pay_new", amount=100)
    # delivered later, but the gateway says it happened earlier
    raw = webhook_body("payment.captured", {
        "id": "pay_old",
        "amount": 5000,
        "created_at": 1700000000,
        "notes": {"userId": "u1"},
    })
    client.post("/api/webhook", content=raw, headers={"X-Razorpay-Signature": sign_webhook(raw)})

    body = client.get("/api/dashboard/u1").json()

    assert [t["id"] for t in body["user"]["recentTransactions"]] == ["pay_new", "pay_old"]
    listed = client.get("/api/transactions/u1").json()["transactions"]
    assert [t["id"] for t in listed] == ["pay_new", "pay_old"]


def test_analysis_includes_savings_opportunities(client):
    client.post("/api/set-budget", json={"userId": "u1", "monthlyLimit": 1000})
    verify(client, "order_1", "pay_1", amount=400, category="Dining")
    verify(client, "order_2", "pay_2", amount=100, category="Bills")

    analysis = client.get("/api/dashboard/u1").json()["analysis"]

    assert analysis["savingsOpportunities"] == [{
        "category": "Dining",
        "currentSpend": 400,
        "potentialSaving": 80,
        "suggestion": "Consider reducing Dining expenses by 20% to save 80.00",
    }]
