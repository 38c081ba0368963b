import pytest

from errors import PaymentProviderError


@pytest.mark.asyncio
async def test_packages_are_public(async_client):
    response = await async_client.get("/api/credits/packages")

    assert response.status_code == 200
    packages = {p["id"]: p for p in response.json()}
    assert set(packages) == {"basico", "popular", "premium"}
    assert packages["popular"]["credits"] == 50
    assert packages["popular"]["pricePerCredit"] == 400
    assert packages["popular"]["popular"] is True
    assert packages["premium"]["savings"] == "30% de descuento"


@pytest.mark.asyncio
async def test_balance_for_provider(async_client, factory):
    user, _ = await factory.provider(credits=7)

    response = await async_client.get("/api/credits/balance", headers=factory.headers(user))

    assert response.status_code == 200
    assert response.json()["currentCredits"] == 7
    assert response.json()["lastPurchase"] is None


@pytest.mark.asyncio
async def test_balance_forbidden_for_customers(async_client, factory):
    customer = await factory.user("cliente@test.com")

    response = await async_client.get("/api/credits/balance", headers=factory.headers(customer))

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_checkout(async_client, factory, mercadopago):
    user, _ = await factory.provider(credits=0)
    mercadopago.create_preference.return_value = {"id": "pref-1", "init_point": "https://mp.test/checkout"}

    response = await async_client.post(
        "/api/payments/mp/create", json={"packageId": "premium"}, headers=factory.headers(user)
    )

    assert response.status_code == 200
    data = response.json()
    assert data["init_point"] == "https://mp.test/checkout"
    assert isinstance(data["purchaseId"], int)


@pytest.mark.asyncio
async def test_create_checkout_unknown_package(async_client, factory):
    user, _ = await factory.provider(credits=0)

    response = await async_client.post(
        "/api/payments/mp/create", json={"packageId": "oro"}, headers=factory.headers(user)
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Paquete de créditos inválido"}


@pytest.mark.asyncio
async def test_create_checkout_provider_down(async_client, factory, mercadopago):
    user, _ = await factory.provider(credits=0)
    mercadopago.create_preference.side_effect = PaymentProviderError("Timeout comunicándose con Mercado Pago")

    response = await async_client.post(
        "/api/payments/mp/create", json={"packageId": "basico"}, headers=factory.headers(user)
    )

    assert response.status_code == 502


@pytest.mark.asyncio
async def test_transactions_history(async_client, factory):
    user, _ = await factory.provider(credits=2)

    response = await async_client.get("/api/credits/transactions", headers=factory.headers(user))

    assert response.status_code == 200
    assert response.json() == []
