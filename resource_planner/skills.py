"""
Skill matching between project requirements and team inventories.

A project's required skills are its direct ProjectSkill rows plus the skills
of every Solution linked to it. A team's inventory is the union of its active
members' PersonSkill rows, falling back to the team's declared target skills
when no member has recorded skills.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .models import Person, PersonSkill, Project, ProjectSkill, ProjectSolution, Skill, Solution, Team


@dataclass(frozen=True)
class RequiredSkill:
    skill_id: str
    skill_name: str
    category: str
    source: str  # "project" or "solution"


@dataclass(frozen=True)
class SkillMatch:
    skill_id: str
    skill_name: str
    category: str
    team_has_skill: bool
    match_type: str  # "exact", "category", "missing"


@dataclass
class TeamProjectCompatibility:
    team_id: str
    project_id: str
    compatibility_score: float
    skill_matches: List[SkillMatch]
    skills_matched: int
    skills_required: int
    skills_gap: int
    category_distribution: Dict[str, Dict[str, int]]
    recommendation: str
    reasoning: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "team_id": self.team_id,
            "project_id": self.project_id,
            "compatibility_score": self.compatibility_score,
            "skills_matched": self.skills_matched,
            "skills_required": self.skills_required,
            "skills_gap": self.skills_gap,
            "recommendation": self.recommendation,
            "reasoning": list(self.reasoning),
            "category_distribution": {k: dict(v) for k, v in self.category_distribution.items()},
            "skill_matches": [
                {
                    "skill_id": m.skill_id,
                    "skill_name": m.skill_name,
                    "category": m.category,
                    "team_has_skill": m.team_has_skill,
                    "match_type": m.match_type,
                }
                for m in self.skill_matches
            ],
        }


@dataclass(frozen=True)
class TeamRecommendation:
    team: Team
    compatibility: TeamProjectCompatibility
    rank: int
    recommendation: str


def _linked_solution_ids(project: Project, project_solutions: Iterable[ProjectSolution]) -> List[str]:
    ids = list(project.solution_ids)
    for link in project_solutions:
        if link.project_id == project.id and link.solution_id not in ids:
            ids.append(link.solution_id)
    return ids


def get_project_required_skills(
    project: Project,
    project_skills: Sequence[ProjectSkill],
    solutions: Sequence[Solution],
    skills: Sequence[Skill],
    project_solutions: Sequence[ProjectSolution] = (),
) -> List[RequiredSkill]:
    sources: Dict[str, str] = {}
    for link in project_skills:
        if link.project_id == project.id and link.skill_id not in sources:
            sources[link.skill_id] = "project"
    solutions_by_id = {s.id: s for s in solutions}
    for solution_id in _linked_solution_ids(project, project_solutions):
        solution = solutions_by_id.get(solution_id)
        if solution is None:
            continue
        for skill_id in solution.skill_ids:
            sources.setdefault(skill_id, "solution")

    skills_by_id = {s.id: s for s in skills}
    required: List[RequiredSkill] = []
    for skill_id, source in sources.items():
        skill = skills_by_id.get(skill_id)
        if skill is not None:
            required.append(RequiredSkill(skill.id, skill.name, skill.category, source))
    return required


def team_skill_ids(
    team: Team, people: Sequence[Person] = (), person_skills: Sequence[PersonSkill] = ()
) -> Set[str]:
    member_ids = {p.id for p in people if p.team_id == team.id and p.is_active}
    recorded = {ps.skill_id for ps in person_skills if ps.person_id in member_ids}
    return recorded or set(team.target_skills)


def _recommendation_level(score: float) -> str:
    if score >= 0.9:
        return "excellent"
    if score >= 0.7:
        return "good"
    if score >= 0.5:
        return "fair"
    return "poor"


def calculate_team_project_compatibility(
    team: Team,
    project: Project,
    project_skills: Sequence[ProjectSkill],
    solutions: Sequence[Solution],
    skills: Sequence[Skill],
    project_solutions: Sequence[ProjectSolution] = (),
    people: Sequence[Person] = (),
    person_skills: Sequence[PersonSkill] = (),
) -> TeamProjectCompatibility:
    required = get_project_required_skills(project, project_skills, solutions, skills, project_solutions)
    owned = team_skill_ids(team, people, person_skills)
    skills_by_id = {s.id: s for s in skills}
    owned_categories = {skills_by_id[sid].category for sid in owned if sid in skills_by_id}

    matches: List[SkillMatch] = []
    distribution: Dict[str, Dict[str, int]] = {}
    exact = 0
    for req in required:
        bucket = distribution.setdefault(req.category, {"required": 0, "matched": 0})
        bucket["required"] += 1
        has_skill = req.skill_id in owned
        if has_skill:
            match_type = "exact"
            exact += 1
            bucket["matched"] += 1
        elif req.category in owned_categories:
            match_type = "category"
        else:
            match_type = "missing"
        matches.append(SkillMatch(req.skill_id, req.skill_name, req.category, has_skill, match_type))

    total = len(required)
    score = exact / total if total else 0.0
    gap = total - exact
    level = _recommendation_level(score)
    pct = round(score * 100)

    reasoning: List[str] = []
    if level == "excellent":
        reasoning.append(f"High skill match ({pct}%)")
    elif level == "good":
        reasoning.append(f"Good skill compatibility ({pct}%)")
    elif level == "fair":
        reasoning.append(f"Moderate skill match ({pct}%)")
        if gap > 0:
            reasoning.append(f"{gap} skill gap{'s' if gap > 1 else ''} need addressing")
    else:
        reasoning.append(f"Low skill compatibility ({pct}%)")
        reasoning.append(f"{gap} critical skills missing")

    strong = [c for c, d in distribution.items() if d["required"] > 0 and d["matched"] == d["required"]]
    weak = [c for c, d in distribution.items() if d["required"] > 0 and d["matched"] == 0]
    if strong:
        reasoning.append(f"Strong in: {', '.join(strong)}")
    if weak:
        reasoning.append(f"Needs development in: {', '.join(weak)}")

    return TeamProjectCompatibility(
        team_id=team.id,
        project_id=project.id,
        compatibility_score=score,
        skill_matches=matches,
        skills_matched=exact,
        skills_required=total,
        skills_gap=gap,
        category_distribution=distribution,
        recommendation=level,
        reasoning=reasoning,
    )


def _recommendation_text(index: int, score: float) -> str:
    if index == 0:
        if score > 0.8:
            return "Excellent match - highly recommended"
        if score > 0.6:
            return "Good match with some skill gaps"
        return "Best available option but requires skill development"
    if score > 0.7:
        return "Strong alternative choice"
    if score > 0.5:
        return "Viable option with training"
    return "Requires significant skill development"


def recommend_teams_for_project(
    project: Project,
    teams: Sequence[Team],
    project_skills: Sequence[ProjectSkill],
    solutions: Sequence[Solution],
    skills: Sequence[Skill],
    max_recommendations: int = 3,
    project_solutions: Sequence[ProjectSolution] = (),
    people: Sequence[Person] = (),
    person_skills: Sequence[PersonSkill] = (),
) -> List[TeamRecommendation]:
    scored = [
        (
            team,
            calculate_team_project_compatibility(
                team, project, project_skills, solutions, skills, project_solutions, people, person_skills
            ),
        )
        for team in teams
    ]
    ranked = sorted(scored, key=lambda pair: pair[1].compatibility_score, reverse=True)
    return [
        TeamRecommendation(
            team=team,
            compatibility=compat,
            rank=index + 1,
            recommendation=_recommendation_text(index, compat.compatibility_score),
        )
        for index, (team, compat) in enumerate(ranked[: max(max_recommendations, 0)])
    ]


def _gap_priority(teams_needing: int, team_count: int) -> str:
    if teams_needing >= team_count * 0.7:
        return "critical"
    if teams_needing >= team_count * 0.3:
        return "important"
    return "nice-to-have"


def analyze_project_skill_gaps(
    project: Project,
    teams: Sequence[Team],
    project_skills: Sequence[ProjectSkill],
    solutions: Sequence[Solution],
    skills: Sequence[Skill],
    project_solutions: Sequence[ProjectSolution] = (),
    people: Sequence[Person] = (),
    person_skills: Sequence[PersonSkill] = (),
) -> Dict[str, object]:
    required = get_project_required_skills(project, project_skills, solutions, skills, project_solutions)
    compatibilities = [
        (
            team,
            calculate_team_project_compatibility(
                team, project, project_skills, solutions, skills, project_solutions, people, person_skills
            ),
        )
        for team in teams
    ]

    available_teams = []
    gap_map: Dict[str, Dict[str, object]] = {}
    for team, compat in compatibilities:
        missing = [m for m in compat.skill_matches if m.match_type == "missing"]
        available_teams.append(
            {
                "team_id": team.id,
                "team_name": team.name,
                "compatibility": compat.to_dict(),
                "missing_skills": [m.skill_name for m in missing],
                "strengths": [m.skill_name for m in compat.skill_matches if m.match_type == "exact"],
            }
        )
        for match in missing:
            entry = gap_map.setdefault(
                match.skill_id,
                {"skill_name": match.skill_name, "category": match.category, "teams_needing": []},
            )
            entry["teams_needing"].append(team.name)

    skill_gaps = []
    for skill_id, entry in gap_map.items():
        needing = entry["teams_needing"]
        skill_gaps.append(dict(entry, skill_id=skill_id, priority=_gap_priority(len(needing), len(teams))))
    priorities = {gap["skill_id"]: gap["priority"] for gap in skill_gaps}

    best_team: Optional[str] = None
    if compatibilities:
        best_score = max(compat.compatibility_score for _, compat in compatibilities)
        best = next(compat for _, compat in compatibilities if compat.compatibility_score == best_score)
        if best.compatibility_score > 0.5:
            best_team = best.team_id

    return {
        "project_id": project.id,
        "project_name": project.name,
        "required_skills": [
            {
                "skill_id": req.skill_id,
                "skill_name": req.skill_name,
                "category": req.category,
                "priority": priorities.get(req.skill_id, "nice-to-have"),
            }
            for req in required
        ],
        "available_teams": available_teams,
        "recommendations": {
            "best_team": best_team,
            "skill_gaps": skill_gaps,
            "training_needs": [
                g["skill_name"] for g in skill_gaps if g["priority"] == "important" and len(g["teams_needing"]) > 1
            ],
            "hiring_needs": [g["skill_name"] for g in skill_gaps if g["priority"] == "critical"],
        },
    }


def filter_teams_by_skills(
    teams: Sequence[Team],
    required_skill_ids: Sequence[str],
    skills: Sequence[Skill],
    min_compatibility_score: float = 0.3,
) -> List[Dict[str, object]]:
    if not required_skill_ids:
        return [{"team": team, "compatibility_score": 1.0, "matching_skills": []} for team in teams]
    names = {s.id: s.name for s in skills}
    results = []
    for team in teams:
        owned = set(team.target_skills)
        matching = [sid for sid in required_skill_ids if sid in owned]
        score = len(matching) / len(required_skill_ids)
        if score >= min_compatibility_score:
            results.append(
                {
                    "team": team,
                    "compatibility_score": score,
                    "matching_skills": [names[sid] for sid in matching if sid in names],
                }
            )
    results.sort(key=lambda item: item["compatibility_score"], reverse=True)
    return results


def analyze_skill_coverage(teams: Sequence[Team], skills: Sequence[Skill]) -> Dict[str, object]:
    coverage = []
    for skill in skills:
        holders = [{"team_id": t.id, "team_name": t.name} for t in teams if skill.id in t.target_skills]
        count = len(holders)
        coverage.append(
            {
                "skill_id": skill.id,
                "skill_name": skill.name,
                "category": skill.category,
                "teams_with_skill": holders,
                "coverage_count": count,
                "is_well_covered": count >= max(2, len(teams) * 0.3),
                "is_at_risk": count <= 1,
            }
        )

    covered = sum(1 for item in coverage if item["coverage_count"] > 0)
    categories: Dict[str, Dict[str, float]] = {}
    for item in coverage:
        data = categories.setdefault(
            item["category"], {"total_skills": 0, "covered_skills": 0, "team_count_sum": 0}
        )
        data["total_skills"] += 1
        data["team_count_sum"] += item["coverage_count"]
        if item["coverage_count"] > 0:
            data["covered_skills"] += 1

    category_analysis = {}
    for category, data in categories.items():
        total = data["total_skills"]
        category_analysis[category] = {
            "total_skills": total,
            "covered_skills": data["covered_skills"],
            "coverage_percentage": data["covered_skills"] / total * 100 if total else 0.0,
            "average_teams_per_skill": data["team_count_sum"] / total if total else 0.0,
        }

    return {
        "total_skills": len(skills),
        "covered_skills": covered,
        "coverage_percentage": covered / len(skills) * 100 if skills else 0.0,
        "skill_coverage": coverage,
        "category_analysis": category_analysis,
        "recommendations": {
            "skills_at_risk": [item["skill_name"] for item in coverage if item["is_at_risk"]],
            "skills_well_covered": [item["skill_name"] for item in coverage if item["is_well_covered"]],
            "categories_needing_attention": [
                category
                for category, data in category_analysis.items()
                if data["coverage_percentage"] < 60 or data["average_teams_per_skill"] < 1.5
            ],
        },
    }
