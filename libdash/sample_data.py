"""Clean sample document written by a forced reset."""

import time
from datetime import date, timedelta
from typing import Any, Dict, List

from libdash.utils.validators import DateValidator


def build_sample_document() -> Dict[str, List[Dict[str, Any]]]:
    base_id = int(time.time() * 1000)
    now = DateValidator.now()
    today = date.today()
    in_a_year = (today + timedelta(days=365)).isoformat()

    books = [
        {
            "id": base_id,
            "coverImage": "/assets/book-covers/cover1.svg",
            "name": "The Great Gatsby",
            "author": "F. Scott Fitzgerald",
            "publisher": "Scribner",
            "bookCode": "A/1/001",
            "copies": 3,
            "description": "A classic American novel set in the Jazz Age.",
            "totalPages": 180,
            "cabinet": "A",
            "shelf": "1",
            "num": "001",
            "publishedDate": "1925-04-10",
            "genres": "Fiction, Classic",
            "comments": "Popular among students",
            "createdAt": now,
            "addedDate": today.isoformat(),
        },
        {
            "id": base_id + 1,
            "coverImage": "/assets/book-covers/cover2.svg",
            "name": "To Kill a Mockingbird",
            "author": "Harper Lee",
            "publisher": "J.B. Lippincott & Co.",
            "bookCode": "A/1/002",
            "copies": 2,
            "description": "A gripping tale of racial injustice and childhood innocence.",
            "totalPages": 281,
            "cabinet": "A",
            "shelf": "1",
            "num": "002",
            "publishedDate": "1960-07-11",
            "genres": "Fiction, Drama",
            "comments": "Award-winning novel",
            "createdAt": now,
            "addedDate": today.isoformat(),
        },
    ]
    borrowers = [
        {
            "id": base_id + 2,
            "memberId": f"BRW-{base_id + 2}",
            "name": "John Smith",
            "phone": "+1234567890",
            "category": "university",
            "joinedDate": today.isoformat(),
            "expiryDate": in_a_year,
            "email": "john.smith@email.com",
            "studies": "Computer Science",
            "job": "Student",
            "hobbies": "Reading, Programming",
            "favoriteBooks": "Science Fiction",
            "createdAt": now,
        },
        {
            "id": base_id + 3,
            "memberId": f"BRW-{base_id + 3}",
            "name": "Emily Johnson",
            "phone": "+1234567892",
            "category": "graduate",
            "joinedDate": today.isoformat(),
            "expiryDate": in_a_year,
            "email": "emily.johnson@email.com",
            "studies": "Literature",
            "job": "Teacher",
            "hobbies": "Writing, Reading",
            "favoriteBooks": "Classic Literature, Harper Lee",
            "createdAt": now,
        },
    ]
    librarians = [
        {
            "id": base_id + 4,
            "librarianId": "LIB-001",
            "name": "Sarah Johnson",
            "phone": "5551234567",
            "email": "sarah.johnson@library.com",
            "appointmentDate": "2023-09-01",
            "employmentStatus": "active",
            "createdAt": now,
        },
    ]
    borrowings = [
        {
            "id": base_id + 5,
            "borrowerId": base_id + 2,
            "librarianId": base_id + 4,
            "bookId": base_id,
            "borrowDate": today.isoformat(),
            "dueDate": (today + timedelta(days=14)).isoformat(),
            "status": "borrowed",
            "createdAt": now,
        },
    ]
    return {
        "books": books,
        "borrowers": borrowers,
        "librarians": librarians,
        "borrowings": borrowings,
        "membershipApplications": [],
    }
