import unittest

from fastapi import APIRouter, FastAPI
from fastapi.testclient import TestClient

from academy.request_context import current_endpoint
from academy.route_logging import EndpointNameRoute


class EndpointNameRouteTests(unittest.TestCase):
    def test_endpoint_label_visible_during_request_only(self):
        router = APIRouter(prefix='/api/probe', route_class=EndpointNameRoute)

        @router.get('/{item_id}')
        async def probe(item_id: int):
            return {'endpoint': current_endpoint.get(), 'item_id': item_id}

        app = FastAPI()
        app.include_router(router)
        with TestClient(app) as client:
            res = client.get('/api/probe/7')

        self.assertEqual(res.json(), {'endpoint': 'GET /api/probe/{item_id}', 'item_id': 7})
        self.assertEqual(current_endpoint.get(), 'background')


if __name__ == '__main__':
    unittest.main()
