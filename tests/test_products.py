from bson import ObjectId
import pytest


@pytest.fixture
def create_product(client):
    def create(**overrides):
        payload = {
            "name": "Desk Lamp",
            "description": "Warm LED lamp",
            "price": 45,
            "category": "lighting",
            "rating": 4,
            **overrides,
        }
        response = client.post("/api/products", json=payload)
        assert response.status_code == 201, response.get_json()
        return response.get_json()

    return create


def test_create_and_fetch_product(client, create_product):
    product = create_product(image="/lamp.png")

    response = client.get(f"/api/products/{product['_id']}")

    assert response.status_code == 200
    body = response.get_json()
    assert body["name"] == "Desk Lamp"
    assert body["image"] == "/lamp.png"
    assert body["slug"] == "desk-lamp"
    assert body["stock"] is True


def test_create_product_reports_missing_fields(client):
    response = client.post("/api/products", json={"name": "Lamp"})

    assert response.status_code == 400
    assert response.get_json() == {
        "message": "Description is required, Price is required, Category is required"
    }


def test_slugs_stay_unique(create_product):
    first = create_product()
    second = create_product()

    assert first["slug"] == "desk-lamp"
    assert second["slug"] == "desk-lamp-2"


def test_list_products(client, create_product):
    create_product()
    create_product(name="Chair", category="furniture")

    response = client.get("/api/products")

    assert response.status_code == 200
    assert {product["name"] for product in response.get_json()} == {"Desk Lamp", "Chair"}


@pytest.mark.parametrize("product_id", [str(ObjectId()), "not-an-id"])
def test_missing_product_is_not_found(client, product_id):
    assert client.get(f"/api/products/{product_id}").status_code == 404
    assert client.put(f"/api/products/{product_id}", json={"name": "X"}).status_code == 404
    assert client.delete(f"/api/products/{product_id}").status_code == 404


def test_update_rating_zero_sets_value_but_empty_name_is_ignored(client, create_product):
    product = create_product()

    response = client.put(
        f"/api/products/{product['_id']}",
        json={"name": "", "rating": 0, "price": 50},
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body["name"] == "Desk Lamp"
    assert body["rating"] == 0
    assert body["price"] == 50


def test_update_leaves_absent_fields_untouched(client, create_product):
    product = create_product()

    body = client.put(f"/api/products/{product['_id']}", json={"category": "office"}).get_json()

    assert body["category"] == "office"
    assert body["description"] == "Warm LED lamp"
    assert body["rating"] == 4


def test_delete_product(client, create_product):
    product = create_product()

    response = client.delete(f"/api/products/{product['_id']}")

    assert response.status_code == 200
    assert response.get_json() == {"message": "Product removed"}
    assert client.get(f"/api/products/{product['_id']}").status_code == 404


def test_categories_are_distinct(client, create_product):
    create_product()
    create_product(name="Floor Lamp")
    create_product(name="Chair", category="furniture")

    response = client.get("/api/products/categories")

    assert response.status_code == 200
    assert response.get_json() == ["furniture", "lighting"]


def test_products_by_category(client, create_product):
    create_product()
    create_product(name="Chair", category="furniture")

    response = client.get("/api/products/category/furniture")

    assert response.status_code == 200
    assert [product["name"] for product in response.get_json()] == ["Chair"]


def test_empty_category_is_not_found(client, create_product):
    create_product()

    response = client.get("/api/products/category/garden")

    assert response.status_code == 404
    assert response.get_json() == {"message": "No products found in category: garden"}


def test_create_product_rejects_list_body(client):
    response = client.post("/api/products", json=[{"name": "Desk Lamp"}])

    assert response.status_code == 400
    assert response.get_json() == {"message": "Invalid request body"}
