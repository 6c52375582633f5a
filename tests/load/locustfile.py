import random
import uuid
from locust import HttpUser, task, between

class OrchestratorUser(HttpUser):
    wait_time = between(0.1, 0.5)

    @task(3)
    def complete_balanced(self):
        self._complete("general", "normal")

    @task(2)
    def complete_code(self):
        self._complete("coding", "high")

    @task(1)
    def complete_structured(self):
        self._complete(
            "extraction",
            "low",
            response_schema={
                "type": "object",
                "properties": {"summary": {"type": "string"}},
                "required": ["summary"],
            },
        )

    def _complete(self, task_type: str, priority: str, response_schema=None):
        request_id = str(uuid.uuid4())
        payload = {
            "request_id": request_id,
            "prompt": f"Load test {random.randint(1, 50)}: generate a 10 word response.",
            "task": task_type,
            "priority": priority,
            "user": {"id": f"load-user-{random.randint(1, 20)}"},
            "workflow_id": "load-test",
            "temperature": 0.7,
        }
        if response_schema is not None:
            payload["response_schema"] = response_schema

        with self.client.post(
            "/v1/complete", json=payload, name=f"/v1/complete [{task_type}]", catch_response=True,
        ) as response:
            if response.status_code == 402:
                response.success()
            elif response.status_code != 200:
                response.failure(f"Failed with status {response.status_code}: {response.text}")

    @task(1)
    def health_check(self):
        self.client.get("/internal/health")

    @task(1)
    def budget_status(self):
        self.client.get("/internal/budget")
