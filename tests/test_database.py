from bson import ObjectId

import database
from schemas import Author, Book, BookInstance, Genre


def test_insert_assigns_string_id_and_timestamps(repos, db):
    author = Author(first_name="Ursula", family_name="LeGuin")
    new_id = repos.authors.insert(author)

    assert author.id == new_id
    doc = db["author"].find_one({"_id": ObjectId(new_id)})
    assert doc["first_name"] == "Ursula"
    assert "id" not in doc
    assert doc["created_at"] == doc["updated_at"]


def test_find_by_id_handles_missing_and_malformed_ids(repos):
    assert repos.genres.find_by_id(str(ObjectId())) is None
    assert repos.genres.find_by_id("not-an-object-id") is None
    assert repos.genres.find_by_id(None) is None


def test_find_sorts_and_projects(repos):
    for title in ("Zebra", "Apple", "Mango"):
        repos.books.insert(Book(title=title, author="a", summary="s", isbn="1"))

    books = repos.books.find(projection=["title"], sort=[("title", 1)])
    assert [b.title for b in books] == ["Apple", "Mango", "Zebra"]
    assert all(b.id for b in books)


def test_replace_keeps_id_and_created_at(repos, db):
    genre = Genre(name="Fantasy")
    genre_id = repos.genres.insert(genre)
    created_at = db["genre"].find_one({"_id": ObjectId(genre_id)})["created_at"]

    assert repos.genres.replace(genre_id, Genre(name="High Fantasy"))
    doc = db["genre"].find_one({"_id": ObjectId(genre_id)})
    assert doc["name"] == "High Fantasy"
    assert doc["created_at"] == created_at
    assert db["genre"].count_documents({}) == 1


def test_replace_and_delete_report_missing(repos):
    assert repos.genres.replace(str(ObjectId()), Genre(name="Poetry")) is False
    assert repos.genres.delete(str(ObjectId())) is False
    assert repos.genres.delete("bogus") is False


def test_populate_single_and_list_references(repos):
    author_id = repos.authors.insert(Author(first_name="Frank", family_name="Herbert"))
    g1 = repos.genres.insert(Genre(name="Science Fiction"))
    book = Book(title="Dune", author=author_id, summary="s", isbn="1", genre=[g1, str(ObjectId())])
    repos.books.insert(book)

    populated = repos.authors.populate(book, "author")
    populated = repos.genres.populate(populated, "genre")
    assert populated.author.family_name == "Herbert"
    assert [g.name for g in populated.genre] == ["Science Fiction"]
    # the original is untouched
    assert book.author == author_id


def test_populate_dangling_reference_yields_none(repos):
    instance = BookInstance(book=str(ObjectId()), imprint="Ace")
    repos.bookinstances.insert(instance)
    assert repos.books.populate(instance, "book").book is None


def test_count_with_filter(repos):
    repos.bookinstances.insert(BookInstance(book="b", imprint="i", status="Available"))
    repos.bookinstances.insert(BookInstance(book="b", imprint="i"))
    assert repos.bookinstances.count() == 2
    assert repos.bookinstances.count({"status": "Available"}) == 1


def test_replace_reports_record_deleted_midway(repos, monkeypatch):
    genre_id = repos.genres.insert(Genre(name="Horror"))
    collection = repos.genres.collection
    original = collection.replace_one

    def delete_then_replace(filter_dict, data):
        collection.delete_one(filter_dict)
        return original(filter_dict, data)

    monkeypatch.setattr(collection, "replace_one", delete_then_replace)
    assert repos.genres.replace(genre_id, Genre(name="Gothic Horror")) is False
    assert repos.genres.count() == 0


def test_client_is_created_once_and_reset_on_close(monkeypatch):
    created = []

    class FakeClient:
        def __init__(self, url):
            self.closed = False
            created.append(self)

        def close(self):
            self.closed = True

    monkeypatch.setattr(database, "MongoClient", FakeClient)
    monkeypatch.setattr(database, "_client", None)

    first = database.get_client()
    assert database.get_client() is first
    assert len(created) == 1

    database.close_client()
    assert first.closed
    assert database._client is None
    assert database.get_client() is not first
    assert len(created) == 2
    database.close_client()
