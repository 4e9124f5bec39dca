from typing import Dict, Iterator, List, Optional

from app.domain.models import MenuCategory, MenuItem

# Prices are whole naira.
MENU: Dict[str, MenuCategory] = {
    "mains": MenuCategory(
        name="Main Dishes",
        items=[
            MenuItem(id="jollof_rice", name="Jollof Rice", price=2500,
                     description="Spicy Nigerian rice with tomatoes and spices and chicken"),
            MenuItem(id="fried_rice", name="Fried Rice", price=2800,
                     description="Mixed vegetables fried rice and chicken"),
            MenuItem(id="chicken_shawarma", name="Chicken Shawarma", price=2800,
                     description="Grilled chicken with vegetables"),
            MenuItem(id="pounded_yam", name="Pounded Yam with Egusi", price=3500,
                     description="Traditional pounded yam with egusi soup"),
            MenuItem(id="suya", name="Suya Platter", price=2000,
                     description="Grilled spiced meat skewers"),
            MenuItem(id="beef_burger", name="Beef Burger", price=2000,
                     description="Beef burger with lettuce, tomato, and onion"),
        ],
    ),
    "drinks": MenuCategory(
        name="Beverages",
        items=[
            MenuItem(id="zobo", name="Zobo Drink", price=800,
                     description="Traditional Nigerian hibiscus drink"),
            MenuItem(id="chapman", name="Chapman", price=1200,
                     description="Nigerian cocktail with fruits"),
            MenuItem(id="water", name="Bottled Water", price=300,
                     description="500ml bottled water"),
            MenuItem(id="5_alive", name="5 Alive", price=1500,
                     description="5 Alive drink"),
            MenuItem(id="soft_drink", name="Soft Drink", price=500,
                     description="Coca-Cola, Pepsi, or Sprite"),
        ],
    ),
    "sides": MenuCategory(
        name="Side Dishes",
        items=[
            MenuItem(id="plantain", name="Fried Plantain", price=800,
                     description="Sweet fried plantain slices"),
            MenuItem(id="moi_moi", name="Moi Moi", price=1000,
                     description="Steamed bean pudding"),
            MenuItem(id="salad", name="Garden Salad", price=1200,
                     description="Fresh mixed vegetables"),
        ],
    ),
}


def menu_as_dict(catalog: Dict[str, MenuCategory] = MENU) -> dict:
    """Catalog in the JSON shape the UI expects: {"categories": {key: {...}}}."""
    return {"categories": {key: cat.to_wire() for key, cat in catalog.items()}}


def iter_menu_items(catalog: Dict[str, MenuCategory] = MENU) -> Iterator[MenuItem]:
    for category in catalog.values():
        yield from category.items


def menu_item_names(catalog: Dict[str, MenuCategory] = MENU) -> List[str]:
    return [item.name for item in iter_menu_items(catalog)]


def find_menu_item_by_id(item_id: str, catalog: Dict[str, MenuCategory] = MENU) -> Optional[MenuItem]:
    iid = (item_id or "").strip()
    if not iid:
        return None
    for item in iter_menu_items(catalog):
        if item.id == iid:
            return item
    return None


def resolve_menu_item(query: str, catalog: Dict[str, MenuCategory] = MENU) -> Optional[MenuItem]:
    """
    Map free text naming a dish to exactly one menu item, or None.

    Precedence (first match in catalog order wins within each rule):
      1. exact case-insensitive name
      2. substring either way ("jollof" -> "Jollof Rice")
      3. first word of the query equals first word of the name
    """
    q = " ".join((query or "").lower().split())
    if not q:
        return None

    items = list(iter_menu_items(catalog))

    for item in items:
        if item.name.lower() == q:
            return item

    for item in items:
        name = item.name.lower()
        if q in name or name in q:
            return item

    first = q.split()[0]
    for item in items:
        if item.name.lower().split()[0] == first:
            return item

    return None
