"""API route tests"""
import pytest
from datetime import datetime, timezone, timedelta
from fastapi import status
from unittest.mock import patch
from urllib.parse import urlparse, parse_qs

from app.models.ai_insight import AiInsight
from app.models.diary_entry import DiaryEntry
from app.models.goal import Goal
from app.models.payment import PaymentRecord, PAYMENT_PENDING
from app.models.transaction import Transaction
from app.models.user import User, TIER_PRO
from app.services.insights_service import InsightUnavailable
from app.services.senangpay_service import checkout_hash


@pytest.mark.critical
class TestAuthentication:
    """Test authentication and protected routes"""

    @pytest.mark.parametrize("method,path", [
        ("get", "/api/auth/me"),
        ("get", "/api/transactions"),
        ("get", "/api/transactions/summary"),
        ("get", "/api/goals"),
        ("get", "/api/diary"),
        ("get", "/api/dashboard"),
        ("get", "/api/subscription"),
        ("post", "/api/ai"),
        ("post", "/api/stripe/customer"),
    ])
    def test_protected_route_requires_auth(self, client, method, path):
        """Protected endpoints return 401 without a bearer token"""
        response = getattr(client, method)(path)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_invalid_token_rejected(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_register_returns_token(self, client, db_session):
        response = client.post(
            "/api/auth/register",
            json={"email": "New.User@Example.com", "password": "longenough", "name": "New"}
        )
        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["token"]
        assert body["user"]["email"] == "new.user@example.com"
        assert body["user"]["tier"] == "FREE"

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == status.HTTP_200_OK
        assert me.json()["user"]["name"] == "New"

    def test_register_short_password_rejected(self, client):
        response = client.post("/api/auth/register", json={"email": "a@example.com", "password": "short"})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_register_duplicate_email(self, client, test_user):
        response = client.post(
            "/api/auth/register",
            json={"email": test_user.email, "password": "TestPassword123!"}
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Email already registered"

    def test_login_success(self, client, test_user):
        response = client.post(
            "/api/auth/login",
            json={"email": test_user.email, "password": "TestPassword123!"}
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["user"]["id"] == test_user.id
        assert response.json()["token"]

    def test_login_wrong_password(self, client, test_user):
        response = client.post(
            "/api/auth/login",
            json={"email": test_user.email, "password": "WrongPassword!"}
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Invalid credentials"

    def test_me_reports_tier(self, authenticated_client, test_user, db_session):
        test_user.tier = TIER_PRO
        test_user.tier_expires_at = datetime.now(timezone.utc) + timedelta(days=10)
        db_session.commit()

        response = authenticated_client.get("/api/auth/me")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["user"]["tier"] == "PRO"
        assert response.json()["user"]["tierExpiresAt"] is not None


@pytest.mark.critical
class TestTransactions:
    """Transactions are stored encrypted and read back decrypted"""

    def test_create_stores_encrypted_amount(self, authenticated_client, db_session, cipher):
        response = authenticated_client.post(
            "/api/transactions",
            json={"type": "expense", "category": "Food", "amount": 45.5, "description": "Lunch"}
        )
        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["data"]["amount"] == 45.5

        stored = db_session.query(Transaction).one()
        assert ":" in stored.amount
        assert "45.5" not in stored.amount
        assert cipher.decode(stored.amount) == 45.5

    def test_list_is_paginated_newest_first(self, authenticated_client):
        for day in range(1, 4):
            authenticated_client.post(
                "/api/transactions",
                json={"type": "income", "category": "Salary", "amount": day * 100,
                      "date": f"2024-01-0{day}T00:00:00Z"}
            )

        response = authenticated_client.get("/api/transactions", params={"page": 1, "limit": 2})

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert [t["amount"] for t in body["data"]] == [300.0, 200.0]
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}

    def test_summary(self, authenticated_client):
        authenticated_client.post("/api/transactions", json={"type": "income", "category": "Salary", "amount": 5000})
        authenticated_client.post("/api/transactions", json={"type": "expense", "category": "Rent", "amount": 1500})
        authenticated_client.post("/api/transactions", json={"type": "expense", "category": "Food", "amount": 500})

        response = authenticated_client.get("/api/transactions/summary")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"] == {"income": 5000.0, "expense": 2000.0, "savings": 3000.0}

    @pytest.mark.parametrize("payload", [
        {"type": "transfer", "category": "Food", "amount": 10},
        {"type": "expense", "category": "", "amount": 10},
        {"type": "expense", "category": "Food", "amount": -1},
        {"type": "expense", "category": "Food", "amount": 10, "description": "x" * 256},
    ])
    def test_invalid_payload_rejected(self, authenticated_client, payload):
        response = authenticated_client.post("/api/transactions", json=payload)
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_corrupt_amount_is_server_error(self, authenticated_client, db_session, test_user):
        db_session.add(Transaction(user_id=test_user.id, type="income", category="Salary", amount="garbage"))
        db_session.commit()

        response = authenticated_client.get("/api/transactions/summary")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"error": "Internal server error"}


@pytest.mark.high
class TestOwnershipValidation:
    """Users cannot modify other users' data"""

    def test_delete_other_users_transaction(self, authenticated_client, db_session, test_user_2, cipher):
        other = Transaction(user_id=test_user_2.id, type="income", category="Salary", amount=cipher.encode(10))
        db_session.add(other)
        db_session.commit()

        response = authenticated_client.delete(f"/api/transactions/{other.id}")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["detail"] == "Not authorized or not found"
        assert db_session.query(Transaction).count() == 1

    def test_delete_own_transaction(self, authenticated_client, db_session):
        created = authenticated_client.post(
            "/api/transactions", json={"type": "income", "category": "Salary", "amount": 10}
        ).json()["data"]

        response = authenticated_client.delete(f"/api/transactions/{created['id']}")

        assert response.status_code == status.HTTP_200_OK
        assert db_session.query(Transaction).count() == 0

    def test_update_other_users_goal(self, authenticated_client, db_session, test_user_2):
        goal = Goal(user_id=test_user_2.id, title="Car", target_amount=1000)
        db_session.add(goal)
        db_session.commit()

        response = authenticated_client.patch(f"/api/goals/{goal.id}", json={"savedAmount": 999})

        assert response.status_code == status.HTTP_403_FORBIDDEN
        db_session.refresh(goal)
        assert goal.saved_amount == 0

    def test_delete_other_users_diary_entry(self, authenticated_client, db_session, test_user_2):
        entry = DiaryEntry(user_id=test_user_2.id, content="private thoughts")
        db_session.add(entry)
        db_session.commit()

        response = authenticated_client.delete(f"/api/diary/{entry.id}")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert db_session.query(DiaryEntry).count() == 1


@pytest.mark.high
class TestGoals:
    """Goal creation and progress status"""

    def test_create_goal(self, authenticated_client):
        response = authenticated_client.post(
            "/api/goals",
            json={"title": "Emergency Fund", "category": "Savings", "targetAmount": 10000,
                  "targetDate": "2030-12-31T00:00:00Z"}
        )
        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["status"] == "On Track"
        assert response.json()["savedAmount"] == 0

    @pytest.mark.parametrize("saved,expected", [
        (10000, "Completed"),
        (12000, "Completed"),
        (7000, "On Track"),
        (6999, "Behind"),
        (0, "Behind"),
    ])
    def test_progress_recomputes_status(self, authenticated_client, saved, expected):
        goal = authenticated_client.post(
            "/api/goals", json={"title": "Emergency Fund", "targetAmount": 10000}
        ).json()

        response = authenticated_client.patch(f"/api/goals/{goal['id']}", json={"savedAmount": saved})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == expected
        assert response.json()["savedAmount"] == saved

    def test_list_without_goals_returns_prompt(self, authenticated_client):
        response = authenticated_client.get("/api/goals")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["goals"] == []
        assert "No goals found yet" in data["ruminaInsight"]["message"]

    def test_list_falls_back_when_model_unavailable(self, authenticated_client):
        authenticated_client.post("/api/goals", json={"title": "Trip", "targetAmount": 3000})

        response = authenticated_client.get("/api/goals")

        data = response.json()["data"]
        assert len(data["goals"]) == 1
        assert "Unable to generate insights" in data["ruminaInsight"]["message"]

    def test_delete_goal(self, authenticated_client, db_session):
        goal = authenticated_client.post("/api/goals", json={"title": "Trip", "targetAmount": 3000}).json()
        response = authenticated_client.delete(f"/api/goals/{goal['id']}")
        assert response.status_code == status.HTTP_200_OK
        assert db_session.query(Goal).count() == 0


@pytest.mark.high
class TestDiary:
    """Diary entries carry the assistant's reply"""

    def test_create_entry_with_reply(self, authenticated_client, db_session):
        with patch("app.services.diary_service.generate_diary_response", return_value="Take it one step at a time."):
            response = authenticated_client.post("/api/diary", json={"content": "Worried about rent"})

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["mood"] == "Neutral"
        assert response.json()["aiInsight"] == "Take it one step at a time."

    def test_reply_failure_returns_502_and_stores_nothing(self, authenticated_client, db_session):
        with patch("app.services.diary_service.generate_diary_response", side_effect=InsightUnavailable("down")):
            response = authenticated_client.post("/api/diary", json={"content": "Worried about rent"})

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert db_session.query(DiaryEntry).count() == 0

    def test_content_too_short(self, authenticated_client):
        response = authenticated_client.post("/api/diary", json={"content": "hi"})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_list_newest_first(self, authenticated_client, db_session, test_user):
        now = datetime.now(timezone.utc)
        db_session.add_all([
            DiaryEntry(user_id=test_user.id, content="older", created_at=now - timedelta(days=1)),
            DiaryEntry(user_id=test_user.id, content="newer", created_at=now),
        ])
        db_session.commit()

        response = authenticated_client.get("/api/diary")

        assert [e["content"] for e in response.json()] == ["newer", "older"]


@pytest.mark.medium
class TestInsightsAndDashboard:
    """AI insight endpoints degrade to fallbacks"""

    def test_insight_fallback_without_model(self, authenticated_client, db_session):
        response = authenticated_client.post("/api/ai", json={})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["financialWellness"] == "No financial data available"
        assert data["lifestyleRecommendations"] == "No lifestyle data available"
        assert db_session.query(AiInsight).count() == 0

    def test_insight_is_recorded(self, authenticated_client, db_session, test_user):
        insight = {
            "financialWellness": {
                "score": 72,
                "ratings": {"savingsRate": {"score": 60, "description": "Decent"}},
            },
            "lifestyleRecommendations": {"dailyMeals": {"recommendedDailyBudget": "RM 40"}},
        }
        with patch("app.api.insights.generate_combined_insight", return_value=insight) as generate:
            response = authenticated_client.post(
                "/api/ai", json={"monthlyIncome": 6000, "monthlyExpenses": 4000, "totalSaved": 10000}
            )

        assert response.status_code == status.HTTP_200_OK
        assert generate.call_args[0][0]["monthlyIncome"] == 6000
        row = db_session.query(AiInsight).one()
        assert row.user_id == test_user.id
        assert row.wellness_score == 72
        assert row.savings_rate == 60
        assert row.debt_management == "No data available"

    def test_dashboard_uses_current_month(self, authenticated_client, db_session, test_user, cipher):
        now = datetime.now(timezone.utc)
        last_year = now - timedelta(days=400)
        db_session.add_all([
            Transaction(user_id=test_user.id, type="income", category="Salary", amount=cipher.encode(5000), date=now),
            Transaction(user_id=test_user.id, type="expense", category="Food", amount=cipher.encode(300), date=now),
            Transaction(user_id=test_user.id, type="expense", category="Rent", amount=cipher.encode(1200), date=now),
            Transaction(user_id=test_user.id, type="expense", category="Food", amount=cipher.encode(999), date=last_year),
        ])
        db_session.commit()

        response = authenticated_client.get("/api/dashboard")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["charts"]["incomeVsExpense"] == {"income": 5000.0, "expense": 1500.0}
        assert data["charts"]["topExpenseCategories"] == [
            {"category": "Rent", "amount": 1200.0},
            {"category": "Food", "amount": 300.0},
        ]
        assert data["financialOverview"]["savingsThisMonth"]["amount"] == "RM 3500.00"
        assert data["insights"] == []


@pytest.mark.critical
class TestBilling:
    """Checkout endpoints record pending payments"""

    def test_stripe_checkout_creates_pending_record(self, authenticated_client, db_session, test_user, auto_mock_stripe):
        response = authenticated_client.post("/api/stripe/create-checkout-session", json={"plan": "PRO"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"id": "cs_test123", "url": "https://checkout.stripe.com/test"}
        record = db_session.query(PaymentRecord).one()
        assert record.gateway_id == "cs_test123"
        assert record.status == PAYMENT_PENDING
        assert record.user_id == test_user.id

        params = auto_mock_stripe.checkout.Session.create.call_args.kwargs
        assert params["line_items"] == [{"price": "price_pro_yearly", "quantity": 1}]
        assert params["metadata"] == {"user_id": str(test_user.id), "plan": "PRO"}
        assert params["customer_email"] == test_user.email

    def test_stripe_checkout_unknown_plan(self, authenticated_client, db_session):
        response = authenticated_client.post("/api/stripe/create-checkout-session", json={"plan": "GOLD"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert db_session.query(PaymentRecord).count() == 0

    def test_create_stripe_customer(self, authenticated_client, db_session, test_user):
        response = authenticated_client.post("/api/stripe/customer")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"customerId": "cus_test123"}
        db_session.refresh(test_user)
        assert test_user.stripe_customer_id == "cus_test123"

    def test_senangpay_checkout(self, authenticated_client, db_session, test_user):
        response = authenticated_client.post("/api/senangpay/checkout", json={"plan": "PRO"})

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["order_id"].startswith(f"PRO_{test_user.id}_")
        assert body["amount"] == "99.00"

        url = urlparse(body["url"])
        query = {k: v[0] for k, v in parse_qs(url.query).items()}
        assert url.path.endswith("/merchant123")
        assert query["order_id"] == body["order_id"]
        assert query["hash"] == checkout_hash(query["detail"], query["amount"], query["order_id"])

        record = db_session.query(PaymentRecord).one()
        assert record.gateway_id == body["order_id"]
        assert record.status == PAYMENT_PENDING

    def test_subscription_state(self, authenticated_client):
        response = authenticated_client.get("/api/subscription")
        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["tier"] == "FREE"
        assert body["subscriptions"] == []
        assert set(body["plans"]) == {"PRO", "PRO_MONTHLY"}


@pytest.mark.medium
class TestMonitoring:
    """Health and metrics endpoints"""

    def test_root(self, client):
        assert client.get("/").json() == {"message": "Finance API is running"}

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "healthy"}

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == status.HTTP_200_OK
        assert "rumina_webhook_events_total" in response.text
