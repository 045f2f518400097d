import numpy as np

# --- SIMULATION --- #
TIME_STEP = 1.0 / 240
INTERVAL = 4 # physics sub-steps per planning step
GRAVITY = [0.0, 0.0, -9.81]

# floor is a static box, top face at z = 0
FLOOR_HALF_EXTENTS = [10.0, 10.0, 1.0]
FLOOR_POS = [0.0, 0.0, -1.0]
FLOOR_FRICTION = 0.9

# --- MPPI --- #
HORIZON = 64
DISCOUNT_FACTOR = 0.99
KAPPA = 0.01 # temperature of the softmax over rollout costs
SAMPLE_COUNT = 128
NOISE_STD = 0.5 # radians, perturbation of the joint targets

# --- EPISODES --- #
EPISODE_LEN = 250
EPISODE_COUNT = 3
WARMUP_UPDATES = 10

# --- OBJECTIVE --- #
# [angular xyz, linear xyz], reward walking forward along +x
BASE_VEL_REF = np.array([0.0, 0.0, 0.0, 1.0, 0.0, 0.0])
BASE_VEL_WEIGHT = np.ones(6)

# --- VALUE ESTIMATOR --- #
FIRST_HIDDEN_SIZE = 64
SECOND_HIDDEN_SIZE = 64
LEARNING_RATE = 1e-3
BATCH_SIZE = 64
TRAIN_EPOCHS = 10

# --- ROBOT PARTS --- #
# defaults for links and joints that do not declare them
LINK_LENGTH = 0.15
LINK_RADIUS = 0.045
LINK_DENSITY = 1000.0
JOINT_KP = 20.0
JOINT_LIMIT = np.pi / 2
