"""
文章API测试
"""
import pytest

from app.models.article import Article


@pytest.fixture
def article_id(sync_db):
    article = Article(title="AI Chips Boom", content="Chipmakers reported record sales this quarter.")
    sync_db.add(article)
    sync_db.commit()
    return article.id


def test_create_article_from_text(api_client, auth_headers):
    response = api_client.post(
        "/api/v1/articles",
        json={"content": "Markets Rally\nStocks rose sharply on Monday.", "source": "Reuters"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Markets Rally"
    assert body["source"] == "Reuters"
    assert "createdAt" in body

    fetched = api_client.get(f"/api/v1/articles/{body['id']}", headers=auth_headers)
    assert fetched.json()["content"] == "Markets Rally\nStocks rose sharply on Monday."


def test_create_article_with_clean(api_client, auth_headers, fake_ai):
    fake_ai.replies.append('{"title": "Markets", "content": "Stocks rose sharply on Monday.", "removedElements": []}')
    response = api_client.post(
        "/api/v1/articles",
        json={"content": "<p>Stocks rose sharply on Monday.</p> https://ads.example.com", "title": "Markets",
              "clean": True},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["content"] == "Stocks rose sharply on Monday."


def test_create_article_requires_content_or_url(api_client, auth_headers):
    response = api_client.post("/api/v1/articles", json={"title": "Nothing"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["errorType"] == "invalid_input"


def test_articles_require_authentication(api_client, article_id):
    assert api_client.get(f"/api/v1/articles/{article_id}").status_code == 401


def test_unknown_article(api_client, auth_headers):
    response = api_client.get("/api/v1/articles/999", headers=auth_headers)
    assert response.status_code == 404


def test_summary(api_client, auth_headers, fake_ai, article_id):
    fake_ai.replies.append("芯片厂商本季度销售创纪录。")
    body = api_client.post(f"/api/v1/articles/{article_id}/summary", headers=auth_headers).json()
    assert body == {"articleId": article_id, "summary": "芯片厂商本季度销售创纪录。"}


def test_keywords_and_sentiment(api_client, auth_headers, fake_ai, article_id):
    fake_ai.replies.extend([
        '{"keywords": ["chipmakers", "record sales"], "categories": ["technology"]}',
        '{"sentiment": "positive", "score": 0.8, "explanation": "销售创纪录"}',
    ])
    keywords = api_client.post(f"/api/v1/articles/{article_id}/keywords", headers=auth_headers).json()
    sentiment = api_client.post(f"/api/v1/articles/{article_id}/sentiment", headers=auth_headers).json()

    assert keywords == {"keywords": ["chipmakers", "record sales"], "categories": ["technology"]}
    assert sentiment["sentiment"] == "positive"
    assert sentiment["score"] == 0.8


def test_classify_updates_article(api_client, auth_headers, fake_ai, article_id):
    fake_ai.replies.append("technology")
    body = api_client.post(f"/api/v1/articles/{article_id}/classify", headers=auth_headers).json()

    assert body == {"articleId": article_id, "type": "technology"}
    assert api_client.get(f"/api/v1/articles/{article_id}", headers=auth_headers).json()["type"] == "technology"


def test_translate_with_article_context(api_client, auth_headers, fake_ai, article_id):
    fake_ai.replies.append("创纪录的销售额")
    response = api_client.post(
        "/api/v1/articles/translate",
        json={"text": "record sales", "articleId": article_id},
        headers=auth_headers,
    )
    assert response.json() == {"translation": "创纪录的销售额"}
    assert fake_ai.calls[0]["variables"]["title"] == "AI Chips Boom"


def test_ask_streams_plain_text(api_client, auth_headers, fake_ai, article_id):
    fake_ai.stream_chunks = ["销售", "创纪录"]
    response = api_client.post(
        f"/api/v1/articles/{article_id}/ask",
        json={"question": "发生了什么？"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "销售创纪录"
