import pytest
from fastapi import status
from app.services import auth as auth_service

def test_password_hashing():
    """Test that password hashing and verification works correctly."""
    password = "MySecurePassword123!"
    hashed = auth_service.get_password_hash(password)
    assert hashed != password
    assert auth_service.verify_password(password, hashed)
    assert not auth_service.verify_password("WrongPassword", hashed)

def test_access_token_round_trip():
    token = auth_service.create_access_token(data={"sub": "jane@example.com", "user_id": 1})
    payload = auth_service.decode_access_token(token)
    assert payload["sub"] == "jane@example.com"
    assert payload["type"] == "access"

def test_decode_garbage_token():
    assert auth_service.decode_access_token("not-a-token") is None

def test_register(client):
    response = client.post("/api/auth/register", json={
        "email": "new@example.com",
        "password": "Password123!",
        "full_name": "New Person",
    })
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["email"] == "new@example.com"

def test_register_duplicate_email(client, user):
    response = client.post("/api/auth/register", json={"email": user.email, "password": "Password123!"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST

def test_login_success(client, user):
    """Test successful login with valid credentials."""
    response = client.post("/api/auth/login", json={"email": user.email, "password": "Password123!"})
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"
    assert "access_token" in response.cookies

def test_login_invalid_credentials(client):
    """Test login failure with wrong password."""
    response = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "wrong"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

def test_me_requires_auth(client):
    assert client.get("/api/auth/me").status_code == status.HTTP_401_UNAUTHORIZED

def test_me(client, auth_headers):
    response = client.get("/api/auth/me", headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["email"] == "jane@example.com"

def test_status_reports_anonymous(client):
    response = client.get("/api/auth/status")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"is_authenticated": False, "user": None}

def test_status_reports_current_user(client, auth_headers):
    data = client.get("/api/auth/status", headers=auth_headers).json()
    assert data["is_authenticated"] is True
    assert data["user"]["full_name"] == "Jane Doe"
