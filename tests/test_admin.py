import io

from PIL import Image
from sqlalchemy import select

from storefront.database import main_session
from storefront.models import EmailLog, Product
from storefront.utils import order_date_from_id
from conftest import stock_of


def new_order(client, pid, qty=1, method="cash_on_pickup"):
    r = client.post("/api/orders", json={"items": [{"productId": pid, "quantity": qty}], "paymentMethod": method})
    assert r.status_code == 201
    return r.get_json()["orderId"]


def png_bytes(size=(12, 8)):
    buf = io.BytesIO()
    Image.new("RGB", size, (43, 138, 126)).save(buf, "PNG")
    buf.seek(0)
    return buf


# ---------- access ----------
def test_admin_routes_are_guarded(client, user_client):
    assert client.get("/api/admin/orders").status_code == 401
    assert user_client.get("/api/admin/orders").status_code == 403
    assert user_client.post("/api/admin/cache/clear").status_code == 403


# ---------- products ----------
def test_create_product_converts_price_and_defaults_sku(admin_client, client):
    r = admin_client.post("/api/admin/products", json={
        "name": "Taza mágica", "description": "Cambia de color", "price": "1500.50",
        "category": "Tazas", "stock": 4, "images": "https://x/a.jpg, https://x/b.jpg",
        "colores": ["Negro"],
    })
    assert r.status_code == 201
    p = r.get_json()["product"]
    assert p["price"] == 1500.5
    assert p["sku"].startswith("SKU-")
    assert p["images"] == ["https://x/a.jpg", "https://x/b.jpg"]
    assert p["status"] == "active"
    # visible right away, the products cache was invalidated
    assert [x["name"] for x in client.get("/api/products").get_json()["products"]] == ["Taza mágica"]


def test_create_product_validation(admin_client):
    assert admin_client.post("/api/admin/products", json={"name": "x"}).status_code == 400
    bad_price = {"name": "x", "description": "y", "price": "abc", "category": "Tazas"}
    assert admin_client.post("/api/admin/products", json=bad_price).status_code == 400
    negative = dict(bad_price, price="-1")
    assert admin_client.post("/api/admin/products", json=negative).status_code == 400


def test_update_product_is_partial(admin_client, client, make_product):
    pid = make_product(name="Taza", price_cents=100, stock=3)
    client.get("/api/products")
    r = admin_client.put("/api/admin/products", json={"id": pid, "price": 25})
    assert r.status_code == 200
    p = r.get_json()["product"]
    assert (p["name"], p["price"], p["stock"]) == ("Taza", 25, 3)
    assert client.get("/api/products").get_json()["products"][0]["price"] == 25

    assert admin_client.put("/api/admin/products", json={"id": 999, "price": 1}).status_code == 404
    assert admin_client.put("/api/admin/products", json={"price": 1}).status_code == 400
    assert admin_client.put("/api/admin/products", json={"id": pid, "status": "gone"}).status_code == 400


def test_delete_is_soft_and_permanent_delete_removes(admin_client, client, make_product):
    pid = make_product()
    assert admin_client.delete("/api/admin/products", json={"id": pid}).status_code == 200
    assert client.get("/api/products").get_json()["products"] == []
    with main_session() as db:
        assert db.get(Product, pid).status == "inactive"

    assert admin_client.delete(f"/api/admin/products/{pid}/permanent-delete").status_code == 200
    with main_session() as db:
        assert db.get(Product, pid) is None
    assert admin_client.delete(f"/api/admin/products/{pid}/permanent-delete").status_code == 404


def test_patch_product_status(admin_client, make_product):
    pid = make_product()
    r = admin_client.patch(f"/api/admin/products/{pid}/status", json={"status": "draft"})
    assert r.status_code == 200
    assert r.get_json()["newStatus"] == "draft"
    assert admin_client.patch(f"/api/admin/products/{pid}/status", json={"status": "sold"}).status_code == 400
    assert admin_client.patch("/api/admin/products/999/status", json={"status": "active"}).status_code == 404


def test_admin_product_listing_has_stats(admin_client, make_product):
    make_product(status="active")
    make_product(status="pending")
    body = admin_client.get("/api/admin/products").get_json()
    assert body["stats"]["total"] == 2
    assert body["stats"]["pending"] == 1


# ---------- orders ----------
def test_order_listing_stats_exclude_cancelled_revenue(admin_client, user_client, make_product):
    pid = make_product(price_cents=1000, stock=10)
    keep = new_order(user_client, pid, 2)
    drop = new_order(user_client, pid, 3)
    user_client.post(f"/api/orders/{drop}/cancel")

    body = admin_client.get("/api/admin/orders").get_json()
    assert body["stats"]["total"] == 2
    assert body["stats"]["cancelled"] == 1
    assert body["stats"]["pending"] == 1
    assert body["stats"]["totalRevenue"] == 20
    only = admin_client.get("/api/admin/orders?status=pending").get_json()["orders"]
    assert [o["id"] for o in only] == [keep]


def test_update_order_status_emails_customer(admin_client, user_client, make_product):
    pid = make_product()
    oid = new_order(user_client, pid)
    r = admin_client.put("/api/admin/orders/status", json={"orderId": oid, "status": "processing"})
    assert r.status_code == 200
    assert user_client.get(f"/api/orders/{oid}").get_json()["order"]["status"] == "processing"
    with main_session() as db:
        sent = db.execute(select(EmailLog).where(EmailLog.order_id == oid,
                                                 EmailLog.email_type == "order_status")).scalars().all()
    assert len(sent) == 1

    assert admin_client.put("/api/admin/orders/status", json={"orderId": oid, "status": "lost"}).status_code == 400
    assert admin_client.put("/api/admin/orders/status", json={"orderId": "ORD-20240101-000000",
                                                              "status": "shipped"}).status_code == 404
    assert admin_client.put("/api/admin/orders/status", json={"status": "shipped"}).status_code == 400


def test_admin_cancel_restores_stock_and_cannot_reopen(admin_client, user_client, make_product):
    pid = make_product(stock=5)
    oid = new_order(user_client, pid, 2)
    admin_client.put("/api/admin/orders/status", json={"orderId": oid, "status": "cancelled"})
    assert stock_of(pid) == 5
    r = admin_client.put("/api/admin/orders/status", json={"orderId": oid, "status": "confirmed"})
    assert r.status_code == 400


def test_tracking_uses_settings_template(admin_client, user_client, make_product):
    pid = make_product()
    oid = new_order(user_client, pid)
    admin_client.put("/api/admin/settings", json={"shipping": {"trackingUrl": "https://track.test/?n={tracking}"}})

    assert admin_client.put("/api/admin/orders/tracking", json={"orderId": oid, "trackingNumber": "AB1"}).status_code == 400
    assert admin_client.put("/api/admin/orders/tracking", json={"orderId": oid, "trackingNumber": "X" * 51}).status_code == 400

    r = admin_client.put("/api/admin/orders/tracking", json={"orderId": oid, "trackingNumber": "AB 123"})
    assert r.status_code == 200
    assert r.get_json()["trackingUrl"] == "https://track.test/?n=AB%20123"
    order = user_client.get(f"/api/orders/{oid}").get_json()["order"]
    assert order["trackingNumber"] == "AB 123"
    assert order["status"] == "shipped"


def test_tracking_url_from_body_wins(admin_client, user_client, make_product):
    pid = make_product()
    oid = new_order(user_client, pid)
    r = admin_client.put("/api/admin/orders/tracking", json={
        "orderId": oid, "trackingNumber": "ZZ99999", "shippingUrl": "https://carrier.test/{tracking}"})
    assert r.get_json()["trackingUrl"] == "https://carrier.test/ZZ99999"
    with main_session() as db:
        assert db.execute(select(EmailLog).where(EmailLog.email_type == "tracking")).scalar_one().order_id == oid


# ---------- users ----------
def test_users_listing_has_order_totals(admin_client, user_client, make_product):
    pid = make_product(price_cents=500, stock=10)
    new_order(user_client, pid, 2)
    users = {u["email"]: u for u in admin_client.get("/api/admin/users").get_json()["users"]}
    assert users["ana@example.com"]["ordersCount"] == 1
    assert users["ana@example.com"]["totalSpent"] == 10
    assert users["boss@example.com"]["ordersCount"] == 0


def test_update_user_role_and_deactivate(admin_client, user_client):
    users = admin_client.get("/api/admin/users").get_json()["users"]
    ana = next(u for u in users if u["email"] == "ana@example.com")
    boss = next(u for u in users if u["email"] == "boss@example.com")

    r = admin_client.put("/api/admin/users", json={"id": ana["id"], "role": "moderator", "name": "Ana G"})
    assert r.get_json()["user"]["role"] == "moderator"
    assert r.get_json()["user"]["name"] == "Ana G"
    assert admin_client.put("/api/admin/users", json={"id": ana["id"], "role": "king"}).status_code == 400

    admin_client.put("/api/admin/users", json={"id": ana["id"], "isActive": False})
    assert user_client.get("/api/auth/me").status_code == 401
    # admins cannot lock themselves out
    assert admin_client.put("/api/admin/users", json={"id": boss["id"], "isActive": False}).status_code == 400


def test_user_roles_endpoint(admin_client, user_client):
    r = admin_client.put("/api/admin/user-roles", json={"email": "ANA@example.com", "role": "admin"})
    assert r.status_code == 200
    assert user_client.get("/api/auth/user-role").get_json()["isAdmin"] is True
    roles = {u["email"]: u["role"] for u in admin_client.get("/api/admin/user-roles").get_json()["users"]}
    assert roles["ana@example.com"] == "admin"
    assert admin_client.put("/api/admin/user-roles", json={"email": "x@example.com", "role": "admin"}).status_code == 404


# ---------- taxonomies ----------
def test_category_crud_generates_slug(admin_client, client):
    r = admin_client.post("/api/admin/categories", json={"name": "Tazas Mágicas"})
    assert r.status_code == 201
    cat = r.get_json()["category"]
    assert cat["slug"] == "tazas-magicas"
    assert admin_client.post("/api/admin/categories", json={"name": "tazas magicas"}).status_code == 409
    assert admin_client.post("/api/admin/categories", json={}).status_code == 400

    admin_client.put("/api/admin/categories", json={"id": cat["id"], "isActive": False})
    assert client.get("/api/categories").get_json()["categories"] == []
    assert len(admin_client.get("/api/admin/categories").get_json()["categories"]) == 1

    assert admin_client.delete("/api/admin/categories", json={"id": cat["id"]}).status_code == 200
    assert admin_client.delete("/api/admin/categories", json={"id": cat["id"]}).status_code == 404


def test_colors_and_motivos_crud(admin_client, client):
    r = admin_client.post("/api/admin/colors", json={"nombre": "Rojo"})
    assert r.status_code == 201
    cid = r.get_json()["id"]
    assert admin_client.post("/api/admin/colors", json={"nombre": "Rojo"}).status_code == 409
    assert [c["nombre"] for c in client.get("/api/colors").get_json()["colors"]] == ["Rojo"]

    admin_client.put("/api/admin/colors", json={"id": cid, "disponible": False})
    assert client.get("/api/colors").get_json()["colors"] == []
    assert len(admin_client.get("/api/admin/colors").get_json()["colors"]) == 1

    m = admin_client.post("/api/admin/motivos", json={"nombre": "Floral"}).get_json()
    assert admin_client.put("/api/admin/motivos", json={"id": m["id"], "nombre": "Flores"}).status_code == 200
    assert [x["nombre"] for x in client.get("/api/motivos").get_json()["motivos"]] == ["Flores"]
    assert admin_client.delete("/api/admin/motivos", json={"id": m["id"]}).status_code == 200
    assert client.get("/api/motivos").get_json()["motivos"] == []


# ---------- settings, logs, cache ----------
def test_settings_roundtrip(admin_client):
    s = admin_client.get("/api/admin/settings").get_json()["settings"]
    assert s["paymentMethods"] == {"stripe": True, "cashOnPickup": True, "transfer": True}
    assert s["lastUpdated"] is None

    s["storeName"] = "Mi tienda"
    r = admin_client.put("/api/admin/settings", json=s)
    assert r.status_code == 200
    saved = r.get_json()["settings"]
    assert saved["storeName"] == "Mi tienda"
    assert saved["lastUpdated"] is not None


def test_settings_validation(admin_client):
    assert admin_client.put("/api/admin/settings", json={"color": "red"}).status_code == 400
    assert admin_client.put("/api/admin/settings", json={"shipping": "x"}).status_code == 400
    assert admin_client.put("/api/admin/settings",
                            json={"shipping": {"trackingUrl": "https://x.test/no-placeholder"}}).status_code == 400
    assert admin_client.put("/api/admin/settings", json={"contactEmail": "nope"}).status_code == 400


def test_partial_settings_merge_nested_sections(admin_client):
    admin_client.put("/api/admin/settings", json={"notifications": {"newUsers": True}})
    s = admin_client.get("/api/admin/settings").get_json()["settings"]
    assert s["notifications"] == {"newOrders": True, "lowStock": True, "newUsers": True}


def test_email_logs_filters(admin_client, user_client, make_product):
    pid = make_product()
    oid = new_order(user_client, pid)
    everything = admin_client.get("/api/admin/email-logs").get_json()
    assert everything["count"] >= 4  # two welcomes plus the order emails

    by_order = admin_client.get(f"/api/admin/email-logs?orderId={oid}").get_json()["logs"]
    assert {e["type"] for e in by_order} == {"order_confirmation", "admin_notification"}
    welcome = admin_client.get("/api/admin/email-logs?type=welcome&status=failed&limit=1").get_json()
    assert welcome["count"] == 1
    assert welcome["filters"]["type"] == "welcome"
    assert admin_client.get("/api/admin/email-logs?limit=x").status_code == 400


def test_cache_clear(admin_client, client, make_product):
    make_product()
    client.get("/api/products")
    client.get("/api/categories")
    r = admin_client.post("/api/admin/cache/clear")
    assert r.status_code == 200
    assert r.get_json()["cleared"] >= 2


def test_test_email(admin_client, monkeypatch):
    assert admin_client.post("/api/admin/test-email", json={"recipientEmail": "bad"}).status_code == 400
    assert admin_client.post("/api/admin/test-email",
                             json={"recipientEmail": "a@b.com", "testType": "spam"}).status_code == 400
    # no SMTP configured
    assert admin_client.post("/api/admin/test-email", json={"recipientEmail": "a@b.com"}).status_code == 500

    sent = []
    monkeypatch.setattr("storefront.mailer._deliver", lambda to, subject, html, text: sent.append((to, subject)))
    r = admin_client.post("/api/admin/test-email", json={"recipientEmail": "a@b.com", "testType": "order_confirmation"})
    assert r.status_code == 200
    assert sent == [("a@b.com", "Pedido ORD-TEST recibido")]


# ---------- uploads ----------
def test_upload_image(admin_client, app):
    r = admin_client.post("/api/admin/upload", data={"file": (png_bytes(), "foto.png", "image/png")},
                          content_type="multipart/form-data")
    assert r.status_code == 200
    body = r.get_json()
    assert (body["width"], body["height"]) == (12, 8)
    assert body["url"] == f"/media/{body['filename']}"
    assert body["filename"].endswith(".png")
    assert admin_client.get(body["url"]).status_code == 200


def test_upload_rejects_bad_files(admin_client, app):
    no_file = admin_client.post("/api/admin/upload", data={}, content_type="multipart/form-data")
    assert no_file.status_code == 400

    gif = admin_client.post("/api/admin/upload", data={"file": (io.BytesIO(b"GIF89a"), "x.gif", "image/gif")},
                            content_type="multipart/form-data")
    assert gif.status_code == 400

    fake = admin_client.post("/api/admin/upload", data={"file": (io.BytesIO(b"not an image"), "x.png", "image/png")},
                             content_type="multipart/form-data")
    assert fake.status_code == 400

    app.config["MAX_UPLOAD_BYTES"] = 10
    big = admin_client.post("/api/admin/upload", data={"file": (png_bytes(), "big.png", "image/png")},
                            content_type="multipart/form-data")
    assert big.status_code == 400


def test_order_listing_filters_by_date_in_id(admin_client, user_client, make_product):
    pid = make_product()
    oid = new_order(user_client, pid)
    day = str(order_date_from_id(oid))
    assert [o["id"] for o in admin_client.get(f"/api/admin/orders?date={day}").get_json()["orders"]] == [oid]
    assert admin_client.get("/api/admin/orders?date=1999-01-01").get_json()["orders"] == []


def test_tracking_carriers(admin_client):
    carriers = admin_client.get("/api/admin/tracking-carriers?q=oca").get_json()["carriers"]
    assert carriers == [{"key": "oca", "name": "OCA",
                         "url": "https://www1.oca.com.ar/OcaEpaktracking/Tracking.aspx?numero={tracking}"}]


# ---------- regressions ----------
def test_product_price_round_trips_through_admin_listing(admin_client, client, make_product):
    pid = make_product(name="Taza", price_cents=150050, original_price_cents=200000)
    p = next(x for x in admin_client.get("/api/admin/products").get_json()["products"] if x["id"] == pid)
    assert (p["price"], p["originalPrice"]) == (1500.5, 2000)

    r = admin_client.put("/api/admin/products", json={"id": pid, "price": p["price"],
                                                      "originalPrice": p["originalPrice"]})
    assert r.get_json()["product"]["price"] == 1500.5
    with main_session() as db:
        assert db.get(Product, pid).price_cents == 150050
    assert client.get(f"/api/products/{pid}").get_json()["product"]["originalPrice"] == 2000


def test_upload_extension_follows_decoded_format(admin_client):
    gif = io.BytesIO()
    Image.new("RGB", (4, 4)).save(gif, "GIF")
    gif.seek(0)
    r = admin_client.post("/api/admin/upload", data={"file": (gif, "x.png", "image/png")},
                          content_type="multipart/form-data")
    assert r.status_code == 400

    jpeg = io.BytesIO()
    Image.new("RGB", (6, 3)).save(jpeg, "JPEG")
    jpeg.seek(0)
    r = admin_client.post("/api/admin/upload", data={"file": (jpeg, "x.png", "image/png")},
                          content_type="multipart/form-data")
    assert r.status_code == 200
    body = r.get_json()
    assert body["filename"].endswith(".jpg")
    assert body["type"] == "image/jpeg"


def test_settings_values_must_match_their_defaults(admin_client, client):
    put = lambda body: admin_client.put("/api/admin/settings", json=body).status_code
    assert put({"storeName": {"x": 1}}) == 400
    assert put({"currency": 5}) == 400
    assert put({"paymentMethods": {"stripe": "yes"}}) == 400
    assert put({"notifications": {"newOrders": 1}}) == 400
    assert put({"shipping": {"trackingUrl": 5}}) == 400
    # nothing was stored and the public view still works
    body = client.get("/api/settings/public").get_json()
    assert body["storeName"] == "Verde Agua Personalizados"
    assert body["paymentMethods"] == {"stripe": True, "cashOnPickup": True, "transfer": True}


def test_admin_text_fields_must_be_text(admin_client, user_client, make_product):
    pid = make_product()
    oid = new_order(user_client, pid)
    assert admin_client.put("/api/admin/products", json={"id": pid, "name": ["Taza"]}).status_code == 400
    assert admin_client.put("/api/admin/products", json={"id": pid, "sku": 12}).status_code == 400
    assert admin_client.post("/api/admin/categories", json={"name": {"x": 1}}).status_code == 400
    assert admin_client.post("/api/admin/colors", json={"nombre": 3}).status_code == 400
    assert admin_client.put("/api/admin/orders/status", json={"orderId": 1, "status": "shipped"}).status_code == 400
    assert admin_client.put("/api/admin/orders/tracking",
                            json={"orderId": oid, "trackingNumber": 1234567}).status_code == 400
    assert admin_client.put("/api/admin/user-roles", json={"email": ["a"], "role": "admin"}).status_code == 400
    assert admin_client.post("/api/admin/test-email", json={"recipientEmail": 1}).status_code == 400


def test_admin_cancel_of_shipped_order_keeps_stock(admin_client, user_client, make_product):
    pid = make_product(stock=5)
    oid = new_order(user_client, pid, 2)
    admin_client.put("/api/admin/orders/status", json={"orderId": oid, "status": "shipped"})
    r = admin_client.put("/api/admin/orders/status", json={"orderId": oid, "status": "cancelled"})
    assert r.status_code == 200
    assert stock_of(pid) == 3
    order = user_client.get(f"/api/orders/{oid}").get_json()["order"]
    assert (order["status"], order["paymentStatus"]) == ("cancelled", "cancelled")


def test_admin_cancel_of_pending_order_cancels_payment(admin_client, user_client, make_product):
    pid = make_product(stock=5)
    oid = new_order(user_client, pid, 2)
    admin_client.put("/api/admin/orders/status", json={"orderId": oid, "status": "cancelled"})
    assert stock_of(pid) == 5
    assert user_client.get(f"/api/orders/{oid}").get_json()["order"]["paymentStatus"] == "cancelled"
