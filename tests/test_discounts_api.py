from decimal import Decimal

def cart_body(code=None, subtotal="100.00", **extra):
    body = {
        "subtotal": subtotal,
        "items": [{"productId": "p1", "price": subtotal, "quantity": 1, "categoryId": "shoes"}],
    }
    if code is not None:
        body["code"] = code
    body.update(extra)
    return body

async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

async def test_validate_code(client, add_discount):
    await add_discount(code="SAVE20", discount_value="20", maximum_discount="15")

    response = await client.post("/api/v1/discounts/validate", json=cart_body("save20"))

    assert response.status_code == 200
    data = response.json()
    assert data["is_valid"] is True
    assert data["reason"] == "discountAppliedCapped"
    assert Decimal(data["amount_off"]) == Decimal("15.00")

async def test_validate_reports_reason_key(client, add_discount):
    await add_discount(code="BIGSPEND", minimum_purchase="500")

    response = await client.post("/api/v1/discounts/validate", json=cart_body("BIGSPEND"))

    data = response.json()
    assert data["is_valid"] is False
    assert data["reason"] == "minimumPurchase"
    assert Decimal(str(data["params"]["amount"])) == Decimal("500")

async def test_validate_uses_bearer_identity(client, add_discount, user_headers):
    await add_discount(code="MEMBERS", user_usage_limit=1)

    guest = await client.post("/api/v1/discounts/validate", json=cart_body("MEMBERS"))
    member = await client.post("/api/v1/discounts/validate", json=cart_body("MEMBERS"), headers=user_headers)

    assert guest.json()["reason"] == "loginRequired"
    assert member.json()["is_valid"] is True

async def test_validate_rejects_malformed_cart(client):
    body = {"code": "SAVE20", "items": [{"productId": "p1", "price": "10", "quantity": 0}]}

    response = await client.post("/api/v1/discounts/validate", json=body)

    assert response.status_code == 422

async def test_invalid_token_is_unauthorized(client):
    response = await client.post(
        "/api/v1/discounts/validate",
        json=cart_body("SAVE20"),
        headers={"Authorization": "Bearer not-a-token"}
    )

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"

async def test_auto_apply(client, add_discount):
    await add_discount(code="AUTO10", discount_value="10", auto_apply=True)

    response = await client.post("/api/v1/discounts/auto-apply", json=cart_body())

    data = response.json()
    assert data["has_auto_apply"] is True
    assert data["discount"]["code"] == "AUTO10"
    assert data["discount"]["display"] == "10% OFF"

async def test_auto_apply_without_campaigns(client):
    response = await client.post("/api/v1/discounts/auto-apply", json=cart_body())

    assert response.json() == {"has_auto_apply": False, "discount": None}

async def test_resolve(client, add_discount):
    await add_discount(code="SAVE10", discount_value="10")
    await add_discount(code="AUTO5", discount_value="5", auto_apply=True)

    response = await client.post("/api/v1/discounts/resolve", json=cart_body("SAVE10"))

    data = response.json()
    assert [a["code"] for a in data["applied"]] == ["SAVE10"]
    assert data["dropped"][0]["reason"] == "notStackable"
    assert Decimal(data["total_discount"]) == Decimal("10.00")

async def test_first_order(client, add_discount, user_headers):
    await add_discount(code="WELCOME30", discount_value="30", first_purchase_only=True)

    response = await client.get("/api/v1/discounts/first-order", params={"total": "40"}, headers=user_headers)

    data = response.json()
    assert data["has_first_order_discount"] is True
    assert Decimal(data["discount"]["amount_off"]) == Decimal("12.00")

async def test_price_preview(client, add_discount):
    await add_discount(code="SHOES25", discount_value="25", applicable_to="category", applicable_ids=["shoes"])

    response = await client.post(
        "/api/v1/discounts/price-preview",
        json={"product_id": "p1", "category_id": "shoes", "base_price": "40.00"}
    )

    data = response.json()
    assert data["has_discount"] is True
    assert data["discount_percentage"] == 25
    assert Decimal(data["discounted_price"]) == Decimal("30.00")

async def test_record_usage_and_limit_conflict(client, add_discount, add_order, user_headers):
    discount = await add_discount(code="ONCE", usage_limit=1, user_usage_limit=None)
    await add_order("order-1", "user-1")
    await add_order("order-2", "user-1")
    body = {"discount_id": str(discount.id), "amount_saved": "5.00"}

    first = await client.post("/api/v1/orders/order-1/discount-usage", json=body, headers=user_headers)
    replay = await client.post("/api/v1/orders/order-1/discount-usage", json=body, headers=user_headers)
    second = await client.post("/api/v1/orders/order-2/discount-usage", json=body, headers=user_headers)

    assert first.status_code == 201
    assert first.json()["order_id"] == "order-1"
    assert replay.status_code == 201
    assert replay.json()["id"] == first.json()["id"]
    assert second.status_code == 409
    assert second.json()["error"] == {
        "code": "DISCOUNT_LIMIT_EXCEEDED",
        "message": "Discount code is no longer available",
        "reason": "usageLimitReached",
    }

async def test_finalize_discount(client, add_discount, add_order, user_headers):
    await add_discount(code="SAVE10", discount_value="10")
    await add_order("order-7", "user-1")

    response = await client.post(
        "/api/v1/orders/order-7/finalize-discount",
        json=cart_body("SAVE10", shipping_fee="4.00"),
        headers=user_headers
    )

    data = response.json()
    assert response.status_code == 200
    assert [a["code"] for a in data["applied"]] == ["SAVE10"]
    assert Decimal(data["order_total"]) == Decimal("94.00")

async def test_record_usage_rejects_orders_that_are_not_the_callers_paid_order(client, add_discount, add_order, user_headers, other_user_headers):
    discount = await add_discount(code="FIRST100", usage_limit=1, user_usage_limit=None)
    await add_order("order-pending", "user-1", payment_status="pending")
    await add_order("order-theirs", "user-2")
    body = {"discount_id": str(discount.id), "amount_saved": "0"}

    missing = await client.post("/api/v1/orders/no-such-order/discount-usage", json=body, headers=user_headers)
    unpaid = await client.post("/api/v1/orders/order-pending/discount-usage", json=body, headers=user_headers)
    theirs = await client.post("/api/v1/orders/order-theirs/discount-usage", json=body, headers=user_headers)
    guest = await client.post("/api/v1/orders/order-theirs/discount-usage", json=body)
    still_open = await client.post(
        "/api/v1/discounts/validate", json=cart_body("FIRST100"), headers=other_user_headers
    )

    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "ORDER_NOT_FOUND"
    assert unpaid.status_code == 409
    assert unpaid.json()["error"]["code"] == "ORDER_NOT_PAID"
    assert theirs.status_code == 403
    assert theirs.json()["error"]["code"] == "ORDER_NOT_OWNED"
    assert guest.status_code == 403
    assert still_open.json()["is_valid"] is True

async def test_finalize_rejects_unpaid_order(client, add_discount, add_order, user_headers):
    await add_discount(code="SAVE10", discount_value="10")
    await add_order("order-8", "user-1", payment_status="pending")

    response = await client.post(
        "/api/v1/orders/order-8/finalize-discount",
        json=cart_body("SAVE10"),
        headers=user_headers
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "ORDER_NOT_PAID"
