def register(client, email="teacher@example.com", name="Teacher", password="secret123"):
    resp = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    return resp.json()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def add_student(client, headers, student_id, name):
    resp = client.post("/api/students", json={"studentId": student_id, "name": name}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def take_attendance(client, headers, day, records, **extra):
    body = {"date": day, "records": [{"student": s, "status": st} for s, st in records], **extra}
    resp = client.post("/api/attendance", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()
