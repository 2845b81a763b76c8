# file: simulate_device.py

import requests
import json
import os
import random
import time

# Ingestion endpoint of the backend
url = os.getenv("FASTAPI_URL", "http://localhost:8000") + "/sensor_value"
headers = {"Content-Type" : "application/json"}


def next_value(previous: float, step: float, low: float, high: float) -> float :
    """Random walk kept inside [low, high]."""
    return min(high, max(low, previous + random.uniform(-step, step)))


def main(count: int = 30, period_s: float = 2.0) :
    # Starting values in realistic ranges
    co = random.uniform(5.0, 50.0)  # CO: 5-50 ppm
    co2 = random.uniform(400.0, 1000.0)  # CO2: 400-1000 ppm as sent by the device
    o2 = random.uniform(20.5, 21.0)  # O2: close to ambient

    for i in range(count) :
        co = next_value(co, 1.0, 0.0, 2500.0)
        co2 = next_value(co2, 10.0, 0.0, 50000.0)
        o2 = next_value(o2, 0.05, 19.5, 23.5)

        data = {"node_name" : "node_sim", "co" : round(co, 2), "co2" : round(co2, 2), "o2" : round(o2, 3),
            "fan" : 1, "compressor" : 0}

        try :
            response = requests.post(url, headers = headers, data = json.dumps(data))
            if response.status_code == 200 :
                print(f"Reading {i + 1} saved: {data}")
            else :
                print(f"Error for reading {i + 1}: {response.status_code} - {response.text}")
        except requests.exceptions.RequestException as e :
            print(f"Request failed for reading {i + 1}: {e}")

        time.sleep(period_s)


if __name__ == "__main__" :
    main()
