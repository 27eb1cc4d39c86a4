import logging

import numpy as np

from consistentcv.matching import ConsistentMatcher, FeatureSet, MatchConfig, match_many
from consistentcv.ransac import apply_T


def make_query(H: np.ndarray, model: FeatureSet, rng: np.random.Generator, *, n_out: int) -> FeatureSet:
    # Moved model features + pixel noise
    pts = apply_T(H, model.locations) + rng.normal(0.0, 0.5, size=model.locations.shape)
    desc = model.descriptors + rng.normal(0.0, 0.02, size=model.descriptors.shape)

    # Wrong matches: a model descriptor at a random spot
    src = rng.choice(len(model), size=n_out, replace=False)
    o_pts = rng.uniform([0, 0], [640, 480], size=(n_out, 2))
    o_desc = model.descriptors[src] + rng.normal(0.0, 0.02, size=(n_out, model.descriptor_length))

    return FeatureSet(np.vstack([pts, o_pts]), np.vstack([desc, o_desc]))


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    rng = np.random.default_rng(0)

    # True homography (mild perspective)
    H_true = np.array(
        [[0.95, 0.04, 22.0],
         [-0.03, 1.02, -6.0],
         [8e-5, -4e-5, 1.0]],
        dtype=np.float64,
    )

    # Model image: 150 features with 64-D descriptors
    n_model = 150
    model = FeatureSet(
        rng.uniform([0, 0], [640, 480], size=(n_model, 2)),
        rng.uniform(0.0, 1.0, size=(n_model, 64)),
    )

    cfg = MatchConfig(
        distance_metric="l2",
        ratio_threshold=0.8,
        transform_family="homography",
        inlier_threshold=3.0,
        max_iterations=2000,
        minimum_inliers=12,
        random_seed=42,
        confidence=0.999,
    )
    matcher = ConsistentMatcher(cfg)

    query = make_query(H_true, model, rng, n_out=60)
    outcome = matcher.match(model, query)

    print("H_true:\n", H_true)
    if not outcome.ok:
        print("match failed:", outcome.failure.value, outcome.detail)
        return

    res = outcome.result
    print("H_est:\n", res.transform.matrix)
    print("num_inliers:", res.num_inliers, "/", len(res.candidates))
    print("rms_error:", res.rms_error)
    print("iterations:", res.num_iterations)
    print("model box in query:\n", res.transform.project_box(640.0, 480.0))

    # Same model against a few frames, one of which does not contain it
    frames = [make_query(H_true, model, rng, n_out=40) for _ in range(3)]
    frames.append(FeatureSet(
        rng.uniform([0, 0], [640, 480], size=(n_model, 2)),
        rng.uniform(0.0, 1.0, size=(n_model, 64)),
    ))
    for i, o in enumerate(match_many(matcher, model, frames)):
        if o.ok:
            print(f"frame {i}: {o.result.summary()}")
        else:
            print(f"frame {i}: no match ({o.failure.value})")


if __name__ == "__main__":
    main()
