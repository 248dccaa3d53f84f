import pytest

from twotower.data.loaders import GENRE_DIM, InMemoryDataSource, load_dataset
from twotower.data.store import load_interaction_store


def item_line(item_id: int, title: str, genres=(), *, genre_dim: int = GENRE_DIM) -> str:
    flags = ["1" if index in genres else "0" for index in range(genre_dim)]
    return "|".join(
        [str(item_id), title, "01-Jan-1995", "", f"http://example.com/{item_id}"] + flags
    )


# Users 10, 20, 30 over items 1-4.
TOY_INTERACTIONS = "\n".join(
    [
        "10\t1\t5\t100",
        "10\t2\t3\t200",
        "20\t2\t4\t150",
        "20\t3\t5\t120",
        "30\t4\t2\t300",
        "30\t1\t4\t310",
    ]
)

TOY_ITEMS = "\n".join(
    [
        item_line(1, "Toy Story (1995)", genres=(3, 4)),
        item_line(2, "GoldenEye (1995)", genres=(1,)),
        item_line(3, "Four Rooms (1995)", genres=(16,)),
        item_line(4, "Untitled", genres=(5,)),
    ]
)


@pytest.fixture
def toy_source() -> InMemoryDataSource:
    return InMemoryDataSource({"u.data": TOY_INTERACTIONS, "u.item": TOY_ITEMS})


@pytest.fixture
def toy_store(toy_source):
    dataset = load_dataset(toy_source)
    return load_interaction_store(dataset.interactions, dataset.items)
