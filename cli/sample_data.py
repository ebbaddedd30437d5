"""
Built-in book collection used by the console demo when no --data file
is given.
"""

SAMPLE_BOOKS = [
    {"title": "To Kill a Mockingbird", "author": "Harper Lee", "genre": "Fiction",
     "published_year": 1960, "price": 12.99, "in_stock": True, "pages": 336,
     "publisher": "J. B. Lippincott & Co."},
    {"title": "1984", "author": "George Orwell", "genre": "Dystopian",
     "published_year": 1949, "price": 10.99, "in_stock": True, "pages": 328,
     "publisher": "Secker & Warburg"},
    {"title": "The Great Gatsby", "author": "F. Scott Fitzgerald", "genre": "Fiction",
     "published_year": 1925, "price": 9.99, "in_stock": True, "pages": 180,
     "publisher": "Charles Scribner's Sons"},
    {"title": "Brave New World", "author": "Aldous Huxley", "genre": "Dystopian",
     "published_year": 1932, "price": 11.5, "in_stock": False, "pages": 311,
     "publisher": "Chatto & Windus"},
    {"title": "The Hobbit", "author": "J.R.R. Tolkien", "genre": "Fantasy",
     "published_year": 1937, "price": 14.99, "in_stock": True, "pages": 310,
     "publisher": "George Allen & Unwin"},
    {"title": "The Catcher in the Rye", "author": "J.D. Salinger", "genre": "Fiction",
     "published_year": 1951, "price": 8.99, "in_stock": True, "pages": 224,
     "publisher": "Little, Brown and Company"},
    {"title": "Pride and Prejudice", "author": "Jane Austen", "genre": "Romance",
     "published_year": 1813, "price": 7.99, "in_stock": True, "pages": 432,
     "publisher": "T. Egerton"},
    {"title": "The Lord of the Rings", "author": "J.R.R. Tolkien", "genre": "Fantasy",
     "published_year": 1954, "price": 19.99, "in_stock": True, "pages": 1178,
     "publisher": "Allen & Unwin"},
    {"title": "Animal Farm", "author": "George Orwell", "genre": "Political Satire",
     "published_year": 1945, "price": 8.5, "in_stock": False, "pages": 112,
     "publisher": "Secker & Warburg"},
    {"title": "The Alchemist", "author": "Paulo Coelho", "genre": "Fiction",
     "published_year": 1988, "price": 10.99, "in_stock": True, "pages": 197,
     "publisher": "HarperOne"},
    {"title": "Moby Dick", "author": "Herman Melville", "genre": "Adventure",
     "published_year": 1851, "price": 12.5, "in_stock": False, "pages": 635,
     "publisher": "Harper & Brothers"},
    {"title": "Wuthering Heights", "author": "Emily Brontë", "genre": "Gothic Fiction",
     "published_year": 1847, "price": 9.99, "in_stock": True, "pages": 342,
     "publisher": "Thomas Cautley Newby"},
    {"title": "The Martian", "author": "Andy Weir", "genre": "Science Fiction",
     "published_year": 2011, "price": 15.99, "in_stock": True, "pages": 369,
     "publisher": "Crown Publishing"},
    {"title": "Circe", "author": "Madeline Miller", "genre": "Fantasy",
     "published_year": 2018, "price": 16.99, "in_stock": False, "pages": 393,
     "publisher": "Little, Brown and Company"},
]
