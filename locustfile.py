from locust import HttpUser, task, between, TaskSet
from random import choice
import logging
import os


class ReaderBehavior(TaskSet):
    def on_start(self):
        # Token issued by the identity provider for a load-test account
        self.token = os.getenv("LOCUST_TOKEN", "")

        self.headers = {'Authorization': f'Bearer {self.token}'} if self.token else {}
        self.stories = []
        self.chapters = []
        self.user_id = None
        self.get_user_info()

    def get_user_info(self):
        if not self.headers:
            return
        response = self.client.get("/users/me", headers=self.headers)
        if response.status_code == 200:
            self.user_id = response.json()["id"]

    @task(3)
    def browse_stories(self):
        sorts = ["recent", "popular", "views", "trending"]
        genres = ["romance", "fantasy", "mystery", "sci-fi", "horror",
                  "adventure", "drama", "comedy", "thriller", "fanfiction"]

        response = self.client.get(
            f"/stories/?sort_by={choice(sorts)}&genre={choice(genres)}&skip=0&limit=20",
            headers=self.headers,
            name="/stories/"
        )
        if response.status_code == 200:
            stories_data = response.json()
            known = {s["id"] for s in self.stories}
            self.stories.extend(s for s in stories_data["stories"] if s["id"] not in known)

    @task(3)
    def open_story(self):
        if not self.stories:
            return
        story = choice(self.stories)
        response = self.client.get(f"/stories/{story['id']}", headers=self.headers, name="/stories/[id]")
        if response.status_code == 200:
            self.chapters = response.json()["chapters"]

    @task(5)
    def read_chapter(self):
        if not self.chapters:
            return
        chapter = choice(self.chapters)
        self.client.get(f"/chapters/{chapter['id']}", headers=self.headers, name="/chapters/[id]")
        self.client.post(f"/chapters/{chapter['id']}/view", headers=self.headers, name="/chapters/[id]/view")
        self.client.get(f"/comments/chapter/{chapter['id']}", headers=self.headers, name="/comments/chapter/[id]")

    @task(1)
    def toggle_like(self):
        if not self.chapters or not self.headers:
            return
        chapter = choice(self.chapters)
        self.client.post(f"/chapters/{chapter['id']}/like", headers=self.headers, name="/chapters/[id]/like")

    @task(1)
    def check_notifications(self):
        if not self.headers:
            return
        self.client.get("/notifications/unread-count", headers=self.headers)
        self.client.get("/notifications/?num_items=20", headers=self.headers, name="/notifications/")


class WebsiteUser(HttpUser):
    tasks = [ReaderBehavior]
    wait_time = between(1, 5)  # Random wait time between tasks
    host = os.getenv("LOCUST_HOST", "http://localhost:8000")

    def on_start(self):
        logging.info("Reader started")
