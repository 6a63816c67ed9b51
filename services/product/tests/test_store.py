from product_service import store


async def test_find_by_id_returns_none_for_unknown_product(session):
    assert await store.find_by_id(session, "missing") is None


async def test_insert_assigns_id_and_created_at(session, make_product):
    product = await make_product(name="Lamp", stock=3, categories=["home", "lighting"])

    found = await store.find_by_id(session, product.id)
    assert found.id == product.id
    assert found.name == "Lamp"
    assert found.stock_quantity == 3
    assert found.categories == ["home", "lighting"]
    assert found.created_at is not None


async def test_decrement_stock_is_guarded_against_going_negative(session, make_product):
    product = await make_product(stock=5)

    updated = await store.decrement_stock(session, product.id, 5)
    assert updated.stock_quantity == 0

    assert await store.decrement_stock(session, product.id, 1) is None
    assert (await store.find_by_id(session, product.id)).stock_quantity == 0


async def test_decrement_and_increment_unknown_product(session):
    assert await store.decrement_stock(session, "missing", 1) is None
    assert await store.increment_stock(session, "missing", 1) is None


async def test_increment_stock(session, make_product):
    product = await make_product(stock=2)

    updated = await store.increment_stock(session, product.id, 8)

    assert updated.stock_quantity == 10


async def test_replace_keeps_id_and_created_at(session, make_product):
    product = await make_product(name="Old", stock=1)

    replaced = await store.replace_product(
        session,
        product.id,
        name="New",
        description="Renamed",
        price=1.5,
        stock_quantity=4,
        categories=["misc"],
    )

    assert replaced.id == product.id
    assert replaced.created_at == product.created_at
    assert replaced.name == "New"
    assert replaced.stock_quantity == 4


async def test_delete_product(session, make_product):
    product = await make_product()

    assert await store.delete_product(session, product.id) is True
    assert await store.delete_product(session, product.id) is False
    assert await store.find_by_id(session, product.id) is None
