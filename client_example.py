"""
Minimal Python client: fetch a student's term report and class history from the API.
Requires: pip install requests
Usage:
  python client_example.py --host http://127.0.0.1:8000 --user admin --password secret --student 1 --term FIRST
"""

import argparse
import json

import requests


def show_error(resp):
    body = resp.json()
    error = body.get("error", {})
    print(f"HTTP {resp.status_code} {error.get('code', '')}: {error.get('message', body)}")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="http://127.0.0.1:8000")
    parser.add_argument("--user", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--student", type=int, required=True)
    parser.add_argument("--term", default="FIRST", choices=["FIRST", "SECOND", "THIRD", "FINAL"])
    parser.add_argument("--class-id", type=int, default=None, help="Report on a past class instead of the current one")
    args = parser.parse_args()

    session = requests.Session()
    # Basic auth for the example; prefer session or token auth in production
    session.auth = (args.user, args.password)

    history = session.get(f"{args.host}/api/students/{args.student}/class-history/", timeout=10)
    if not history.ok:
        show_error(history)
        return
    payload = history.json()
    if payload["repaired"]:
        print("Class history was out of date and has been repaired.")
    for entry in payload["history"]:
        marker = "*" if entry["is_active"] else " "
        print(f" {marker} {entry['academic_year']}  {entry['class_name']} ({entry['grade_name']})")

    params = {"term": args.term}
    if args.class_id:
        params["class_id"] = args.class_id
    report = session.get(f"{args.host}/api/students/{args.student}/report/", params=params, timeout=10)
    if not report.ok:
        show_error(report)
        return
    data = report.json()
    if data["pending_approval"]:
        print(f"Results for {args.term} are awaiting approval.")
        return
    for subject in data["subjects"]:
        partial = " (partial)" if subject["is_partial_grading"] else ""
        print(f"{subject['subject_name']:<20} {subject['final_percentage']:>6.2f}%  {subject['grade']}{partial}")
    print(f"Overall: {data['overall_average']} -> {data['overall_grade']}")
    print(json.dumps(data["approval"], indent=2))


if __name__ == "__main__":
    main()
